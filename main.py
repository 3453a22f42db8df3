"""
Magnetic dipole locator: producer process.

Reads magnetometer frames from the data collector, calibrates the
ambient baseline, localizes the source on every frame where it is
present, prints the result and publishes it to the snapshot channel.
"""

import sys
import time
import signal
import logging
import argparse
from typing import Optional, Sequence

import config
from magneto_core.geometry import Point, angle_deg, dist
from magneto_core.io import (
    ChannelRole,
    EndOfStream,
    ReplayLineReader,
    SerialLineReader,
    SnapshotChannel,
    SnapshotChannelError,
    TransportError,
)
from magneto_core.localization import (
    Baseline,
    CalibrationSchedule,
    EngineConfig,
    LocalizationEngine,
    MovingAverage,
)
from magneto_core.metrics import get_metrics
from magneto_core.proto import (
    Estimate,
    FrameSample,
    MalformedFrameError,
    SaturatedFrameError,
    read_frame,
)

logging.basicConfig(
    level=getattr(logging, config.LOGGING_CONFIG["level"]),
    format=config.LOGGING_CONFIG["format"]
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class MagnetoLocalizationProcess:
    """Producer main class"""

    def __init__(
        self,
        line_source,
        channel: Optional[SnapshotChannel] = None,
        sensors: Optional[Sequence[Point]] = None,
        poi: Optional[Point] = None,
    ):
        """
        Initialize the localization pipeline.

        Args:
            line_source: Object with open/flush/sync/readline/close
            channel: Snapshot channel (producer role), None disables publishing
            sensors: Sensor layout (defaults to SENSOR_CONFIG)
            poi: Point of interest (defaults to SENSOR_CONFIG)

        Raises:
            ValueError: fewer than 3 sensors or invalid configuration
        """
        self.running = False
        self.line_source = line_source
        self.channel = channel

        if sensors is None:
            sensors = [Point(x, y) for x, y in config.SENSOR_CONFIG["positions"]]
        self.sensors = tuple(sensors)
        self.poi = poi if poi is not None else Point(*config.SENSOR_CONFIG["poi"])

        loc = config.LOCALIZATION_CONFIG
        self.engine = LocalizationEngine(self.sensors, EngineConfig(
            aggregation=loc["aggregation"],
            min_candidates=loc["min_candidates"],
            min_valid_points=loc["min_valid_points"],
            expected_valid_points=loc["expected_valid_points"],
        ))
        self.abort_on_malformed = loc["abort_on_malformed"]

        cal = config.CALIBRATION_CONFIG
        self.schedule = CalibrationSchedule(
            frames=cal["frames"],
            initial_speed=cal["initial_speed"],
            speed_step=cal["speed_step"],
        )
        self.idle_speed = cal["idle_speed"]
        self.baseline = Baseline(len(self.sensors))
        self.threshold = config.DETECTION_CONFIG["threshold"]

        smoothing = config.OUTPUT_CONFIG["smoothing_length"]
        self.dist_filter = MovingAverage(smoothing, 0.0)
        self.angle_filter = MovingAverage(smoothing, 0.0)

        self.metrics = get_metrics()
        self.loop_count = 0
        self.last_estimate: Optional[Estimate] = None

        logger.info(f"Sensor layout: {' '.join(str(p) for p in self.sensors)}")

    def install_signal_handlers(self):
        """Turn SIGINT/SIGTERM into a graceful stop."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Signal handler"""
        logger.info(f"Received signal {signum}, stopping...")
        self.running = False
        raise KeyboardInterrupt

    def _read_sample(self) -> Optional[FrameSample]:
        """
        Read and parse one line.

        Returns:
            FrameSample, or None if the frame was skipped

        Raises:
            MalformedFrameError: if malformed frames are fatal
        """
        line = self.line_source.readline()
        self.metrics.increment('frames_in')

        try:
            return read_frame(line, len(self.sensors))
        except SaturatedFrameError as e:
            self.metrics.increment_drop('saturated')
            logger.debug(f"Skipping frame: {e}")
        except MalformedFrameError as e:
            if self.abort_on_malformed:
                raise
            self.metrics.increment_drop('malformed')
            logger.warning(f"Skipping malformed frame: {e}")
        return None

    def calibrate(self):
        """Feed the startup frames through the baseline update."""
        logger.info(f"Calibrating over {self.schedule.frames} frames...")

        for speed in self.schedule.speeds():
            sample = None
            while sample is None:
                sample = self._read_sample()
            self.baseline.update(sample.magnitudes, speed)
            self.metrics.increment('frames_calibration')

        logger.info(f"Calibration done. Baseline values: {self.baseline}")

    def process_sample(self, sample: FrameSample) -> Optional[Estimate]:
        """
        Localize the source for one parsed frame.

        Args:
            sample: Parsed frame

        Returns:
            Engine estimate (valid or rejected), None if no source is present
        """
        self.metrics.increment('frames_measured')

        if not self.baseline.is_source_present(sample.magnitudes, self.threshold):
            self.metrics.increment_drop('source_absent')
            logger.debug("Skipping frame: no source present")
            if self.idle_speed:
                self.baseline.update(sample.magnitudes, self.idle_speed)
            return None

        estimate = self.engine.locate(self.baseline.filtered_input(sample.magnitudes))
        if not estimate.is_valid:
            self.metrics.increment_drop(estimate.drop_reason)
            return estimate

        self.last_estimate = estimate
        self._report(estimate)

        if self.channel is not None:
            self.channel.publish(estimate, sample, self.sensors, self.poi)

        return estimate

    def _report(self, estimate: Estimate):
        """Print one output line: loop, position, distance/bearing to poi."""
        result = estimate.result
        distance = dist(result, self.poi)
        bearing = angle_deg(result, self.poi)

        self.metrics.record_histogram('result_distance', distance)

        avg_distance = self.dist_filter.update(distance)
        avg_bearing = self.angle_filter.update(bearing)

        if config.OUTPUT_CONFIG["enable_console_print"]:
            print(f"{self.loop_count}\t{result.x:.2f}\t{result.y:.2f}\t"
                  f"{distance:.2f}\t{bearing:.2f}°\t"
                  f"{avg_distance:.2f}\t{avg_bearing:.2f}°")

    def start(self) -> int:
        """
        Run the producer until interrupted or the input ends.

        Returns:
            Process exit code
        """
        logger.info("Magneto locator starting...")

        try:
            self.line_source.open()
        except TransportError as e:
            logger.error(f"Error while opening {self.line_source.describe()}: {e}")
            return EXIT_FAILURE

        try:
            if self.channel is not None:
                self.channel.open()

            self.running = True
            self.line_source.flush()
            self.line_source.sync()

            self.calibrate()
            self._run_loop()
            return EXIT_OK

        except KeyboardInterrupt:
            logger.info("Interrupted")
            return EXIT_OK
        except EndOfStream as e:
            logger.info(f"{e}")
            return EXIT_OK
        except MalformedFrameError as e:
            logger.error(f"Parsing error: {e}")
            return EXIT_FAILURE
        except (TransportError, SnapshotChannelError, OSError) as e:
            logger.error(f"Fatal I/O error: {e}")
            return EXIT_FAILURE
        finally:
            self.stop()

    def _run_loop(self):
        """Main loop"""
        interval = config.OUTPUT_CONFIG["status_interval_s"]
        last_status_time = time.time()

        logger.info("Entering main loop")
        while self.running:
            if time.time() - last_status_time > interval:
                logger.info(
                    f"Status: {self.metrics.get_counter('frames_in')} frames, "
                    f"{self.metrics.get_counter('locate_success')} estimates"
                )
                last_status_time = time.time()

            self.loop_count += 1
            sample = self._read_sample()
            if sample is None:
                continue

            self.process_sample(sample)

    def stop(self):
        """Stop and release the channel and the line source."""
        logger.info("Stopping magneto locator...")
        self.running = False

        # producer flag goes NONE before exit so the consumer sees the disconnect
        if self.channel is not None:
            self.channel.close()
        self.line_source.close()

        self.metrics.print_summary()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point"""
    parser = argparse.ArgumentParser(description='Magnetic dipole locator (producer)')
    parser.add_argument('--port', '-p', type=str, default=None,
                        help='serial port or pyserial URL')
    parser.add_argument('--baud', '-b', type=int, default=None,
                        help='serial baud rate')
    parser.add_argument('--replay', '-r', type=str, default=None,
                        help='replay frames from a capture file instead of the serial port')
    parser.add_argument('--segment', '-s', type=str, default=None,
                        help='shared memory segment name')
    parser.add_argument('--no-shared', action='store_true',
                        help='do not publish snapshots')
    parser.add_argument('--debug', '-d', action='store_true',
                        help='enable debug logging')

    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.port:
        config.SERIAL_CONFIG["port"] = args.port
    if args.baud:
        config.SERIAL_CONFIG["baudrate"] = args.baud
    if args.segment:
        config.SHARED_CONFIG["segment_name"] = args.segment
    if args.no_shared:
        config.SHARED_CONFIG["enabled"] = False

    if args.replay:
        source = ReplayLineReader(args.replay, encoding=config.SERIAL_CONFIG["encoding"])
    else:
        source = SerialLineReader(
            config.SERIAL_CONFIG["port"],
            baudrate=config.SERIAL_CONFIG["baudrate"],
            timeout=config.SERIAL_CONFIG["timeout"],
            encoding=config.SERIAL_CONFIG["encoding"],
        )

    try:
        channel = None
        if config.SHARED_CONFIG["enabled"]:
            channel = SnapshotChannel(
                config.SHARED_CONFIG["segment_name"],
                sensor_count=len(config.SENSOR_CONFIG["positions"]),
                role=ChannelRole.PRODUCER,
            )
        process = MagnetoLocalizationProcess(source, channel)
    except ValueError as e:
        logger.error(f"Error while initializing localization engine: {e}")
        return EXIT_FAILURE

    process.install_signal_handlers()
    return process.start()


if __name__ == "__main__":
    sys.exit(main())
