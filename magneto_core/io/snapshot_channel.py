"""
Cross-Process Snapshot Channel.

Publishes the latest localization result plus its diagnostic geometry
from the producer process to a renderer process through one named POSIX
shared-memory segment holding a single fixed-layout numpy record.

Consistency uses a sequence lock with a single writer:
- the producer makes `seq` odd, writes every field, makes `seq` even
- the consumer copies the record and retries until `seq` was the same
  even value before and after the copy

Liveness: each side marks its own flag ACTIVE on open() and NONE on
close(). The segment is unlinked from the OS namespace only by the side
that closes last, i.e. when both flags read NONE.
"""

from typing import List, Optional, Sequence, Tuple
from dataclasses import dataclass
from enum import IntEnum
import logging
import time

import numpy as np
from multiprocessing import resource_tracker
from multiprocessing.shared_memory import SharedMemory

from magneto_core.geometry import Circle, Point
from magneto_core.proto.estimate import Estimate
from magneto_core.proto.frame import AXIS_COUNT, FrameSample
from magneto_core.metrics import get_metrics

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_NAME = "magneto-snapshot"


class ConnectionState(IntEnum):
    """Liveness flag value of one side of the channel."""

    NONE = 0
    ACTIVE = 1


class ChannelRole(IntEnum):
    """Which side of the channel a handle represents."""

    PRODUCER = 0
    CONSUMER = 1


class SnapshotChannelError(RuntimeError):
    """Channel misuse or an unreadable segment."""


def snapshot_dtype(sensor_count: int) -> np.dtype:
    """
    Record layout for a given sensor count.

    Capacities: one circle per sensor pair, two points per circle pair.
    """
    if sensor_count < 3:
        raise ValueError(f"Snapshot needs at least 3 sensors, got {sensor_count}")

    circle_count = sensor_count * (sensor_count - 1) // 2
    point_capacity = circle_count * (circle_count - 1)

    return np.dtype([
        ("seq", np.uint64),          # even=stable, odd=writer in progress
        ("producer", np.int32),
        ("consumer", np.int32),
        ("timestamp", np.float64),   # time.monotonic() of the publish
        ("valid", np.uint8),
        ("source_present", np.uint8),
        ("sensors", np.float64, (sensor_count, 2)),
        ("poi", np.float64, (2,)),
        ("axes", np.float64, (sensor_count * AXIS_COUNT,)),
        ("magnitudes", np.float64, (sensor_count,)),
        ("inputs", np.float64, (sensor_count,)),
        ("circle_count", np.int32),
        ("circles", np.float64, (circle_count, 3)),
        ("point_count", np.int32),
        ("points", np.float64, (point_capacity, 2)),
        ("filtered_count", np.int32),
        ("filtered", np.float64, (point_capacity, 2)),
        ("result", np.float64, (2,)),
    ])


@dataclass
class Snapshot:
    """
    Consumer-side copy of the shared record.

    Attributes:
        sensors: Sensor layout
        poi: Point of interest distances/bearings are reported against
        axes: Raw axis readings of the published frame
        magnitudes: Raw magnitude per sensor
        inputs: Calibrated magnitude per sensor
        source_present: Presence detector state
        circles: Apollonius circles
        points: All intersection candidates
        filtered: Candidates outside the sensor triangle
        result: Estimated source position (None until valid)
        valid: A valid estimate has been published
        timestamp: Monotonic publish time (0.0 before the first publish)
        producer_active: Producer liveness flag
        consumer_active: Consumer liveness flag
        fresh: Newer than the previous fetch through the same handle
    """

    sensors: List[Point]
    poi: Point
    axes: Tuple[int, ...]
    magnitudes: Tuple[float, ...]
    inputs: Tuple[float, ...]
    source_present: bool
    circles: List[Circle]
    points: List[Point]
    filtered: List[Point]
    result: Optional[Point]
    valid: bool
    timestamp: float
    producer_active: bool
    consumer_active: bool
    fresh: bool = False

    @classmethod
    def from_record(cls, record: np.ndarray, fresh: bool = False) -> 'Snapshot':
        """Build a snapshot from a copied numpy record (shape (1,))."""
        r = record[0]
        circle_count = int(r["circle_count"])
        point_count = int(r["point_count"])
        filtered_count = int(r["filtered_count"])
        valid = bool(r["valid"])

        return cls(
            sensors=_unpack_points(r["sensors"], len(r["sensors"])),
            poi=Point(float(r["poi"][0]), float(r["poi"][1])),
            axes=tuple(int(v) for v in r["axes"]),
            magnitudes=tuple(float(v) for v in r["magnitudes"]),
            inputs=tuple(float(v) for v in r["inputs"]),
            source_present=bool(r["source_present"]),
            circles=[
                Circle(Point(float(cx), float(cy)), float(cr))
                for cx, cy, cr in r["circles"][:circle_count]
            ],
            points=_unpack_points(r["points"], point_count),
            filtered=_unpack_points(r["filtered"], filtered_count),
            result=Point(float(r["result"][0]), float(r["result"][1])) if valid else None,
            valid=valid,
            timestamp=float(r["timestamp"]),
            producer_active=int(r["producer"]) == ConnectionState.ACTIVE,
            consumer_active=int(r["consumer"]) == ConnectionState.ACTIVE,
            fresh=fresh,
        )


def _unpack_points(array: np.ndarray, count: int) -> List[Point]:
    return [Point(float(x), float(y)) for x, y in array[:count]]


def _pack_points(points: Sequence[Point], capacity: int) -> np.ndarray:
    if len(points) > capacity:
        raise ValueError(f"{len(points)} points exceed snapshot capacity {capacity}")
    packed = np.zeros((capacity, 2))
    for i, p in enumerate(points):
        packed[i] = (p.x, p.y)
    return packed


def _open_segment(name: str, create: bool, size: int = 0) -> SharedMemory:
    """
    Open a segment without handing its lifetime to the resource tracker.

    Unlinking is decided by the liveness flags, not by process exit.
    """
    try:
        return SharedMemory(name=name, create=create, size=size, track=False)  # type: ignore[call-arg]
    except TypeError:
        shm = SharedMemory(name=name, create=create, size=size)
        resource_tracker.unregister(shm._name, "shared_memory")  # type: ignore[attr-defined]
        return shm


class SnapshotChannel:
    """
    One side of the snapshot channel.

    Usage (producer):
        with SnapshotChannel(sensor_count=3, role=ChannelRole.PRODUCER) as channel:
            channel.publish(estimate, sample, sensors, poi)

    Usage (consumer):
        with SnapshotChannel(sensor_count=3, role=ChannelRole.CONSUMER) as channel:
            snapshot = channel.fetch()
            if snapshot.fresh and snapshot.valid:
                draw(snapshot)
    """

    def __init__(
        self,
        name: str = DEFAULT_SEGMENT_NAME,
        sensor_count: int = 3,
        role: ChannelRole = ChannelRole.PRODUCER,
        max_read_retries: int = 1000,
    ):
        """
        Initialize channel handle (nothing is mapped until open()).

        Args:
            name: Shared-memory segment name
            sensor_count: Sensor count both sides agree on
            role: PRODUCER (single writer) or CONSUMER
            max_read_retries: Seqlock retries before fetch() gives up
        """
        self.name = name
        self.sensor_count = sensor_count
        self.role = ChannelRole(role)
        self.dtype = snapshot_dtype(sensor_count)
        self.max_read_retries = max_read_retries
        self.metrics = get_metrics()

        self._shm: Optional[SharedMemory] = None
        self._record: Optional[np.ndarray] = None
        self._last_timestamp = 0.0

        self.circle_capacity = self.dtype["circles"].shape[0]
        self.point_capacity = self.dtype["points"].shape[0]

    @property
    def is_open(self) -> bool:
        return self._record is not None

    def open(self) -> 'SnapshotChannel':
        """
        Attach to (or create) the segment and mark this side ACTIVE.

        Returns:
            self, for chaining
        """
        if self.is_open:
            return self

        nbytes = self.dtype.itemsize
        shm: Optional[SharedMemory]

        try:
            shm = _open_segment(self.name, create=False)
        except FileNotFoundError:
            shm = None

        if shm is not None and shm.size < nbytes:
            logger.warning(
                f"Replacing stale segment {self.name}: {shm.size} < {nbytes} bytes"
            )
            shm.close()
            shm.unlink()
            shm = None

        created = False
        if shm is None:
            try:
                shm = _open_segment(self.name, create=True, size=nbytes)
                created = True
            except FileExistsError:
                shm = _open_segment(self.name, create=False)

        self._shm = shm
        self._record = np.ndarray((1,), dtype=self.dtype, buffer=shm.buf)

        if created:
            self._record[:] = np.zeros(1, dtype=self.dtype)
            logger.info(f"Created shared segment {self.name} ({nbytes} bytes)")
        else:
            logger.info(f"Attached to shared segment {self.name}")

        if self.role == ChannelRole.PRODUCER:
            if self.is_producer_connected():
                logger.warning(f"Producer flag already ACTIVE on {self.name}, taking over")
            self._reset_record()

        self._set_own_state(ConnectionState.ACTIVE)
        return self

    def _reset_record(self):
        """
        Invalidate data left by a previous producer run.

        A producer that died mid-publish leaves `seq` odd; it is rounded up
        to the next even value so readers are not locked out.
        """
        record = self._require_open()
        seq = int(record["seq"][0])
        if seq % 2:
            logger.warning(f"Recovering interrupted publish on {self.name} (seq={seq})")
            seq += 1

        record["seq"][0] = seq + 1
        try:
            record["valid"][0] = 0
            record["timestamp"][0] = 0.0
        finally:
            record["seq"][0] = seq + 2

    def close(self):
        """
        Mark this side NONE and release the mapping.

        The segment is unlinked only if the other side is NONE as well.
        """
        if not self.is_open:
            return

        self._set_own_state(ConnectionState.NONE)
        unlink = not (self.is_producer_connected() or self.is_consumer_connected())

        self._record = None
        shm = self._shm
        self._shm = None
        shm.close()

        if unlink:
            try:
                shm.unlink()
                logger.info(f"Unlinked shared segment {self.name}")
            except FileNotFoundError:
                pass

    def __enter__(self) -> 'SnapshotChannel':
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _require_open(self) -> np.ndarray:
        if self._record is None:
            raise SnapshotChannelError(f"Channel {self.name} is not open")
        return self._record

    def _set_own_state(self, state: ConnectionState):
        field = "producer" if self.role == ChannelRole.PRODUCER else "consumer"
        self._require_open()[field][0] = int(state)

    def is_producer_connected(self) -> bool:
        if self._record is None:
            return False
        return int(self._record["producer"][0]) == ConnectionState.ACTIVE

    def is_consumer_connected(self) -> bool:
        if self._record is None:
            return False
        return int(self._record["consumer"][0]) == ConnectionState.ACTIVE

    def publish(
        self,
        estimate: Estimate,
        sample: FrameSample,
        sensors: Sequence[Point],
        poi: Point,
        source_present: bool = True,
    ):
        """
        Overwrite the shared record with one frame's result.

        Args:
            estimate: Engine output for the frame
            sample: Parsed frame (raw axes and magnitudes)
            sensors: Sensor layout
            poi: Point of interest
            source_present: Presence detector state

        Raises:
            SnapshotChannelError: channel closed or not the producer
            ValueError: data does not fit the record layout
        """
        record = self._require_open()
        if self.role != ChannelRole.PRODUCER:
            raise SnapshotChannelError("Only the producer may publish")

        if len(sensors) != self.sensor_count or sample.sensor_count != self.sensor_count:
            raise ValueError(f"Snapshot layout is fixed at {self.sensor_count} sensors")

        if len(estimate.circles) > self.circle_capacity:
            raise ValueError(
                f"{len(estimate.circles)} circles exceed capacity {self.circle_capacity}"
            )

        circles = np.zeros((self.circle_capacity, 3))
        for i, c in enumerate(estimate.circles):
            circles[i] = (c.center.x, c.center.y, c.radius)
        points = _pack_points(estimate.points, self.point_capacity)
        filtered = _pack_points(estimate.filtered, self.point_capacity)
        result = estimate.result if estimate.result is not None else Point()

        seq = int(record["seq"][0])
        record["seq"][0] = seq + 1
        try:
            record["sensors"][0] = [(p.x, p.y) for p in sensors]
            record["poi"][0] = (poi.x, poi.y)
            record["axes"][0] = sample.axes
            record["magnitudes"][0] = sample.magnitudes
            record["inputs"][0] = estimate.inputs
            record["source_present"][0] = 1 if source_present else 0
            record["circle_count"][0] = len(estimate.circles)
            record["circles"][0] = circles
            record["point_count"][0] = len(estimate.points)
            record["points"][0] = points
            record["filtered_count"][0] = len(estimate.filtered)
            record["filtered"][0] = filtered
            record["result"][0] = (result.x, result.y)
            record["valid"][0] = 1 if estimate.is_valid else 0
            record["timestamp"][0] = time.monotonic()
        finally:
            record["seq"][0] = seq + 2

        self.metrics.increment('snapshots_published')

    def fetch(self) -> Snapshot:
        """
        Copy out a consistent snapshot.

        Returns:
            Snapshot; `fresh` is True only if its timestamp is newer than
            the one seen by the previous fetch through this handle

        Raises:
            SnapshotChannelError: channel closed, or the writer held the
                record for longer than max_read_retries attempts
        """
        record = self._require_open()

        for attempt in range(self.max_read_retries):
            seq_before = int(record["seq"][0])
            if seq_before % 2:
                time.sleep(0)
                continue

            copy = record.copy()
            if int(record["seq"][0]) == seq_before:
                break
        else:
            raise SnapshotChannelError(
                f"No consistent read of {self.name} after {self.max_read_retries} attempts"
            )

        timestamp = float(copy["timestamp"][0])
        fresh = timestamp > self._last_timestamp
        if fresh:
            self._last_timestamp = timestamp

        return Snapshot.from_record(copy, fresh=fresh)
