"""
Magnetic dipole locator: console consumer.

Attaches to the producer's snapshot channel and prints each fresh
snapshot on a fixed tick. The producer does not have to be running yet;
the monitor simply reports nothing until the first publish.
"""

import sys
import time
import signal
import logging
import argparse
from typing import Optional, Sequence

import config
from magneto_core.geometry import Point
from magneto_core.io import (
    ChannelRole,
    Snapshot,
    SnapshotChannel,
    SnapshotChannelError,
)

logging.basicConfig(
    level=getattr(logging, config.LOGGING_CONFIG["level"]),
    format=config.LOGGING_CONFIG["format"]
)
logger = logging.getLogger(__name__)


def _mirror(p: Point, axis: Optional[str]) -> Point:
    return p.mirrored(axis) if axis else p


def format_snapshot(snapshot: Snapshot, mirror_axis: Optional[str] = None) -> str:
    """
    Render a snapshot as a short multi-line text block.

    Args:
        snapshot: Fetched snapshot
        mirror_axis: Optional axis to mirror every point about ('x' or 'y')

    Returns:
        Printable text
    """
    sensors = " ".join(str(_mirror(p, mirror_axis)) for p in snapshot.sensors)
    lines = [f"sensors: {sensors}"]
    lines.append(
        "inputs:  " + " ".join(f"{v:.1f}" for v in snapshot.inputs)
    )

    for c in snapshot.circles:
        center = _mirror(c.center, mirror_axis)
        lines.append(f"circle:  {center} r={c.radius:.3f}")

    lines.append(f"points:  {len(snapshot.points)} candidates, "
                 f"{len(snapshot.filtered)} outside the sensor triangle")

    if snapshot.result is not None:
        result = _mirror(snapshot.result, mirror_axis)
        lines.append(f"result:  {result} ({snapshot.result.dist(snapshot.poi):.2f} from poi)")
    else:
        lines.append("result:  none")

    return "\n".join(lines)


class SnapshotMonitor:
    """Periodic fetch-and-print loop over a consumer channel handle."""

    def __init__(
        self,
        channel: SnapshotChannel,
        period_s: float = 0.1,
        mirror_axis: Optional[str] = None,
    ):
        if channel.role != ChannelRole.CONSUMER:
            raise ValueError("SnapshotMonitor needs a consumer channel")
        if mirror_axis not in (None, "x", "y"):
            raise ValueError(f"Invalid mirror axis: {mirror_axis}")

        self.channel = channel
        self.period_s = period_s
        self.mirror_axis = mirror_axis
        self.running = False
        self.shown = 0
        self._producer_seen = False

    def poll_once(self) -> Optional[Snapshot]:
        """
        Fetch once and print if the snapshot is new.

        Returns:
            The snapshot if it was fresh and valid, else None
        """
        snapshot = self.channel.fetch()

        if snapshot.producer_active != self._producer_seen:
            self._producer_seen = snapshot.producer_active
            state = "connected" if snapshot.producer_active else "disconnected"
            logger.info(f"Producer {state}")

        if not (snapshot.fresh and snapshot.valid):
            return None

        self.shown += 1
        print(format_snapshot(snapshot, self.mirror_axis))
        print()
        return snapshot

    def start(self) -> int:
        """Run until interrupted."""
        try:
            self.channel.open()
        except (SnapshotChannelError, OSError) as e:
            logger.error(f"Unable to attach to {self.channel.name}: {e}")
            return 1

        self.running = True
        try:
            while self.running:
                self.poll_once()
                time.sleep(self.period_s)
            return 0
        except KeyboardInterrupt:
            return 0
        except SnapshotChannelError as e:
            logger.error(f"Channel error: {e}")
            return 1
        finally:
            self.stop()

    def stop(self):
        self.running = False
        self.channel.close()
        logger.info(f"Monitor stopped after {self.shown} snapshots")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point"""
    parser = argparse.ArgumentParser(description='Magnetic dipole locator (console monitor)')
    parser.add_argument('--segment', '-s', type=str,
                        default=config.SHARED_CONFIG["segment_name"],
                        help='shared memory segment name')
    parser.add_argument('--period', type=float, default=config.MONITOR_CONFIG["period_s"],
                        help='fetch period in seconds')
    parser.add_argument('--mirror', choices=['x', 'y'],
                        default=config.MONITOR_CONFIG["mirror_axis"],
                        help='mirror points about this axis')
    parser.add_argument('--debug', '-d', action='store_true',
                        help='enable debug logging')

    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    channel = SnapshotChannel(
        args.segment,
        sensor_count=len(config.SENSOR_CONFIG["positions"]),
        role=ChannelRole.CONSUMER,
    )
    monitor = SnapshotMonitor(channel, args.period, args.mirror)

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping...")
        monitor.running = False

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    return monitor.start()


if __name__ == "__main__":
    sys.exit(main())
