"""
Unit tests for the console consumer.
"""

import logging

import pytest

from magneto_core.geometry import Point
from magneto_core.io import ChannelRole, SnapshotChannel
from magneto_core.proto import read_frame
from monitor import SnapshotMonitor, format_snapshot

SOURCE = Point(2.0, 10.0)


@pytest.fixture
def channels(segment_name):
    producer = SnapshotChannel(segment_name, role=ChannelRole.PRODUCER).open()
    consumer = SnapshotChannel(segment_name, role=ChannelRole.CONSUMER).open()
    yield producer, consumer
    consumer.close()
    producer.close()


@pytest.fixture
def publish(channels, engine, source_inputs, sensor_layout, poi):
    producer, _ = channels
    sample = read_frame("100 0 0 0 200 0 0 0 300\n", 3)

    def do_publish():
        producer.publish(engine.locate(source_inputs(SOURCE)), sample, sensor_layout, poi)

    return do_publish


class TestFormatSnapshot:
    """Tests for the text rendering."""

    def test_contents(self, channels, publish):
        """Test circles, candidate counts and the result are listed."""
        publish()
        text = format_snapshot(channels[1].fetch())

        assert text.count("circle:") == 3
        assert "6 candidates, 3 outside" in text
        assert "result:  (2,10)" in text

    def test_mirrored(self, channels, publish):
        """Test mirroring about x flips the y coordinates."""
        publish()
        text = format_snapshot(channels[1].fetch(), mirror_axis='x')

        assert "result:  (2,-10)" in text
        assert "(0,-5.19615)" in text

    def test_no_result(self, channels):
        """Test an empty record renders without a result."""
        assert "result:  none" in format_snapshot(channels[1].fetch())


class TestSnapshotMonitor:
    """Tests for the polling loop."""

    def test_requires_consumer(self, segment_name):
        """Test a producer handle is rejected."""
        with pytest.raises(ValueError):
            SnapshotMonitor(SnapshotChannel(segment_name, role=ChannelRole.PRODUCER))

    def test_invalid_mirror_axis(self, segment_name):
        """Test an unknown mirror axis is rejected."""
        channel = SnapshotChannel(segment_name, role=ChannelRole.CONSUMER)

        with pytest.raises(ValueError):
            SnapshotMonitor(channel, mirror_axis='z')

    def test_poll_shows_fresh_snapshots_once(self, channels, publish, capsys):
        """Test each publish is printed exactly once."""
        monitor = SnapshotMonitor(channels[1])

        assert monitor.poll_once() is None

        publish()
        assert monitor.poll_once() is not None
        assert monitor.poll_once() is None
        assert monitor.shown == 1
        assert "result:" in capsys.readouterr().out

    def test_producer_connection_logged(self, channels, caplog):
        """Test the monitor reports the producer state change."""
        monitor = SnapshotMonitor(channels[1])

        with caplog.at_level(logging.INFO):
            monitor.poll_once()

        assert "Producer connected" in caplog.text
