"""
Line Sources: blocking line-read interface to the data collector.

- SerialLineReader: live magnetometer frames over a serial port (pyserial)
- ReplayLineReader: recorded frames from a capture file

Both expose open(), flush(), sync(), readline() and close(), and raise
TransportError when the underlying I/O fails.
"""

import logging
from typing import Optional

import serial

logger = logging.getLogger(__name__)


class TransportError(IOError):
    """Opening or reading the line source failed."""


class EndOfStream(TransportError):
    """The source has no more lines (replay file exhausted, port closed)."""


class SerialLineReader:
    """
    Newline-framed reader on top of a pyserial port.

    `port` may be a device path ("/dev/ttyACM0") or any pyserial URL
    ("loop://", "socket://host:port"), see serial.serial_for_url().
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 115200,
        timeout: Optional[float] = None,
        encoding: str = "ascii",
    ):
        """
        Initialize reader (the port is not opened yet).

        Args:
            port: Device path or pyserial URL
            baudrate: Line speed
            timeout: Per-read timeout in seconds, None blocks
            encoding: Frame text encoding
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.encoding = encoding
        self.serial: Optional[serial.SerialBase] = None

    def describe(self) -> str:
        return f"serial port {self.port}"

    def open(self):
        """Open the port."""
        try:
            self.serial = serial.serial_for_url(
                self.port, baudrate=self.baudrate, timeout=self.timeout
            )
        except (serial.SerialException, ValueError) as e:
            raise TransportError(f"Unable to open {self.port}: {e}") from e

        logger.info(f"Opened connection to {self.port} @ {self.baudrate} baud")

    def _require_open(self) -> serial.SerialBase:
        if self.serial is None:
            raise TransportError(f"{self.port} is not open")
        return self.serial

    def flush(self):
        """Discard any input accumulated before the loop starts."""
        try:
            self._require_open().reset_input_buffer()
        except serial.SerialException as e:
            raise TransportError(f"Flush failed on {self.port}: {e}") from e

    def sync(self):
        """Skip bytes up to and including the next newline."""
        logger.info("Syncing with data collector...")
        self._read_until_newline()
        logger.info("Syncing done")

    def readline(self) -> str:
        """
        Block until one complete line has been received.

        Returns:
            Decoded line including its line ending
        """
        data = self._read_until_newline()
        return data.decode(self.encoding, errors="replace")

    def _read_until_newline(self) -> bytes:
        port = self._require_open()
        buffer = bytearray()

        while not buffer.endswith(b"\n"):
            try:
                chunk = port.readline()
            except serial.SerialException as e:
                raise TransportError(f"Read failed on {self.port}: {e}") from e
            # an empty chunk is a read timeout, keep waiting
            buffer.extend(chunk)

        return bytes(buffer)

    def close(self):
        """Close the port."""
        if self.serial is not None:
            self.serial.close()
            self.serial = None
            logger.info(f"Closed {self.port}")

    def __enter__(self) -> 'SerialLineReader':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class ReplayLineReader:
    """
    Replay frames recorded from the collector, one per line.

    Raises EndOfStream once the file is exhausted.
    """

    def __init__(self, path: str, encoding: str = "ascii"):
        self.path = path
        self.encoding = encoding
        self._file = None

    def describe(self) -> str:
        return f"replay file {self.path}"

    def open(self):
        """Open the capture file."""
        try:
            self._file = open(self.path, "r", encoding=self.encoding, errors="replace")
        except OSError as e:
            raise TransportError(f"Unable to open {self.path}: {e}") from e

        logger.info(f"Replaying frames from {self.path}")

    def flush(self):
        """Nothing is buffered ahead of a capture file."""

    def sync(self):
        """Capture files start on a line boundary."""

    def readline(self) -> str:
        """Next recorded line."""
        if self._file is None:
            raise TransportError(f"{self.path} is not open")

        try:
            line = self._file.readline()
        except OSError as e:
            raise TransportError(f"Read failed on {self.path}: {e}") from e

        if not line:
            raise EndOfStream(f"End of {self.path}")
        return line

    def close(self):
        """Close the capture file."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> 'ReplayLineReader':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
