"""This file stores low-level helper modules that are used by the main SiRFTransportLayer class to support its
runtime.

At this time, this file includes the following assets:
- FrameBuffer class that encapsulates the single reusable scratch region used to assemble incoming and outgoing
frames.
- OSP and NMEA checksum kernels that are used to verify received frames and to sign transmitted commands.
- SerialMock class used to test SiRFTransportLayer's transmission and reception behavior.

Both checksum kernels are implemented using Numba and Numpy to optimize runtime execution speed. Frames may be up to
2052 bytes long and the checksums are recomputed for every received message, so the loops are compiled to machine code
the first time they are called. The FrameBuffer class wraps the kernels to provide a standard python API.

The SerialMock class is a pure-python class whose main job is to 'overload' the methods of the pySerial's Serial
class so that SiRFTransportLayer can be tested without a connected GNSS receiver. In addition to buffering the written
and read data, it can simulate the failure modes of a real serial link: fragmented reads, short writes and failed
output drains.
"""

from typing import Optional

import numpy as np
from numba import njit, uint8, uint32  # type: ignore
from serial import SerialException
from numpy.typing import NDArray
from ataraxis_base_utilities import console


@njit(nogil=True, cache=True)  # type: ignore
def _osp_checksum(buffer: NDArray[np.uint8], start: int, stop: int) -> int:
    """Computes the OSP 15-bit running-sum checksum of buffer[start:stop].

    The sum is accumulated in a uint32 scalar and is masked to 15 bits after each addition.
    """
    checksum = uint32(0)
    for index in range(start, stop):
        checksum = uint32((checksum + uint32(buffer[index])) & uint32(0x7FFF))
    return checksum


@njit(nogil=True, cache=True)  # type: ignore
def _nmea_checksum(buffer: NDArray[np.uint8], start: int, stop: int) -> int:
    """Computes the NMEA running-XOR checksum of buffer[start:stop]."""
    checksum = uint8(0)
    for index in range(start, stop):
        checksum = uint8(checksum ^ buffer[index])
    return checksum


class FrameBuffer:
    """Stores the single, reusable scratch region that SiRFTransportLayer uses to assemble OSP and NMEA frames.

    The buffer is allocated once, at class instantiation, and is overwritten in place by every read and write
    operation. It only ever holds one frame (pending or completed) at a time.

    Notes:
        All methods that write to or read from the buffer verify that the accessed region fits inside the buffer and
        raise an error otherwise. The underlying numpy array is never exposed directly: the only ways to extract data
        from the buffer are the copying read_bytes() method and the 'data' property.

        The 'payload_size' tracker does not alter the buffer contents. Resetting it to 0 makes the data stored in the
        buffer 'invalid', which is cheaper than re-creating or zeroing the buffer.

    Args:
        capacity: The size of the buffer, in bytes.

    Attributes:
        _buffer: The numpy uint8 array that stores the frame data.
        _payload_size: Tracks how many bytes (relative to index 0) of the buffer store the payload of the last
            successfully processed frame.

    Raises:
        ValueError: If the capacity argument is not a positive integer.
    """

    def __init__(self, capacity: int) -> None:
        if not isinstance(capacity, int) or capacity <= 0:
            message = (
                f"Unable to initialize FrameBuffer class. Expected a positive integer value for 'capacity' argument, "
                f"but encountered {capacity} of type {type(capacity).__name__}."
            )
            console.error(message=message, error=ValueError)

        self._buffer: NDArray[np.uint8] = np.zeros(shape=capacity, dtype=np.uint8)
        self._payload_size: int = 0

    def __repr__(self) -> str:
        """Returns a string representation of the FrameBuffer class instance."""
        return f"FrameBuffer(capacity={self.capacity}, payload_size={self._payload_size})"

    @property
    def capacity(self) -> int:
        """Returns the maximum number of bytes the buffer can store."""
        return int(self._buffer.size)

    @property
    def payload_size(self) -> int:
        """Returns the size of the payload stored inside the buffer."""
        return self._payload_size

    @payload_size.setter
    def payload_size(self, size: int) -> None:
        if not 0 <= size <= self.capacity:
            message = (
                f"Unable to set the payload size of the FrameBuffer. Expected a value between 0 and "
                f"{self.capacity}, but encountered {size}."
            )
            console.error(message=message, error=ValueError)
        self._payload_size = size

    @property
    def data(self) -> NDArray[np.uint8]:
        """Returns a copy of the entire buffer numpy array."""
        return self._buffer.copy()

    def reset(self) -> None:
        """Resets the payload size tracker to 0, invalidating the data currently stored in the buffer."""
        self._payload_size = 0

    def write_bytes(self, data: bytes, start_index: int = 0) -> int:
        """Writes the input bytes to the buffer, starting at the requested index.

        Args:
            data: The bytes to write to the buffer.
            start_index: The index inside the buffer at which to start writing the data.

        Returns:
            The index immediately following the last written byte.

        Raises:
            ValueError: If the data does not fit inside the buffer, starting at the requested index.
        """
        end_index = start_index + len(data)
        if start_index < 0 or end_index > self.capacity:
            message = (
                f"Unable to write {len(data)} bytes to the FrameBuffer starting at index {start_index}. The buffer "
                f"has a capacity of {self.capacity} bytes."
            )
            console.error(message=message, error=ValueError)

        self._buffer[start_index:end_index] = np.frombuffer(data, dtype=np.uint8)
        return end_index

    def write_byte(self, value: int, index: int) -> int:
        """Writes a single byte value to the requested buffer index and returns the index that follows it."""
        if not 0 <= index < self.capacity:
            message = (
                f"Unable to write a byte to the FrameBuffer at index {index}. The buffer has a capacity of "
                f"{self.capacity} bytes."
            )
            console.error(message=message, error=ValueError)

        self._buffer[index] = value & 0xFF
        return index + 1

    def read_bytes(self, start_index: int, stop_index: int) -> bytes:
        """Returns a copy of the buffer region between the start (inclusive) and stop (exclusive) indices."""
        self._verify_region(start_index, stop_index)
        return self._buffer[start_index:stop_index].tobytes()

    def osp_checksum(self, start_index: int, stop_index: int) -> int:
        """Calculates the OSP 15-bit running-sum checksum for the requested buffer region."""
        self._verify_region(start_index, stop_index)
        return int(_osp_checksum(self._buffer, start_index, stop_index))

    def nmea_checksum(self, start_index: int, stop_index: int) -> int:
        """Calculates the NMEA running-XOR checksum for the requested buffer region."""
        self._verify_region(start_index, stop_index)
        return int(_nmea_checksum(self._buffer, start_index, stop_index))

    def _verify_region(self, start_index: int, stop_index: int) -> None:
        if not 0 <= start_index <= stop_index <= self.capacity:
            message = (
                f"Unable to access the FrameBuffer region [{start_index}:{stop_index}]. The buffer has a capacity of "
                f"{self.capacity} bytes."
            )
            console.error(message=message, error=ValueError)


def calculate_osp_checksum(data: bytes) -> int:
    """Calculates the OSP 15-bit running-sum checksum for the input payload.

    Args:
        data: The OSP payload (message ID followed by the message body).

    Returns:
        The checksum value, which is always below 0x8000.
    """
    return int(_osp_checksum(np.frombuffer(data, dtype=np.uint8), 0, len(data)))


def calculate_nmea_checksum(data: bytes) -> int:
    """Calculates the NMEA XOR checksum for the input sentence body (the characters between '$' and '*')."""
    return int(_nmea_checksum(np.frombuffer(data, dtype=np.uint8), 0, len(data)))


class SerialMock:
    """Simulates the methods of pySerial.Serial class used by SiRFTransportLayer class to support unit-testing.

    This class only provides the methods that are either helpful for testing (like resetting the Mock class buffers)
    or are directly used by the SiRFTransportLayer class (reading, writing and flushing data, opening / closing the
    port, etc.).

    Notes:
        Like its prototype, this class returns an empty 'bytes' object when read() is called and no data is available.
        This simulates a read that timed out without receiving any bytes.

        Unlike its prototype, this class exposes the rx_ and tx_ buffers, which allows feeding arbitrary byte streams
        to the tested class and inspecting the frames it transmits. Assigning tx_buffer to rx_buffer turns the mock
        into a loopback channel.

    Args:
        read_chunk_size: The maximum number of bytes returned by a single read() call. Used to simulate a link that
            delivers the data in fragments. If None, read() returns as many bytes as requested (and available).
        write_limit: The maximum number of bytes accepted by a single write() call. Used to simulate short writes.
            If None, all bytes are accepted.
        fail_flush: Determines whether flush() calls fail, simulating an output drain error.

    Attributes:
        is_open: A boolean flag that tracks the state of the serial port.
        tx_buffer: A buffer that stores the data to be sent over the serial port.
        rx_buffer: A buffer that stores the data received from the serial port.
        baudrate: The baudrate of the mocked port.
        timeout: The read timeout of the mocked port, in seconds. None means reads block indefinitely.
        read_chunk_size: Stores the read_chunk_size argument.
        write_limit: Stores the write_limit argument.
        fail_flush: Stores the fail_flush argument.
        read_calls: Counts the read() calls made since the mock was created.
        flush_calls: Counts the flush() calls made since the mock was created.
    """

    def __init__(
        self,
        read_chunk_size: Optional[int] = None,
        write_limit: Optional[int] = None,
        *,
        fail_flush: bool = False,
    ) -> None:
        self.is_open = False
        self.tx_buffer = b""
        self.rx_buffer = b""
        self.baudrate: int = 4800
        self.timeout: Optional[float] = None
        self.read_chunk_size = read_chunk_size
        self.write_limit = write_limit
        self.fail_flush = fail_flush
        self.read_calls: int = 0
        self.flush_calls: int = 0

    def __repr__(self) -> str:
        repr_message = f"SerialMock(open={self.is_open})"
        return repr_message

    def open(self) -> None:
        """If 'is_open' flag is False, switches it to True. Simulates the effect of successful 'open' method calls."""
        if not self.is_open:
            self.is_open = True

    def close(self) -> None:
        """If 'is_open' flag is True, switches it to False. Simulates the effect of successful 'close' method calls."""
        if self.is_open:
            self.is_open = False

    def write(self, data: bytes) -> int:
        """Writes the input data (stored as a 'bytes' object) to the tx_buffer buffer.

        Args:
            data: The data to be written to the output buffer. Has to be stored as a 'bytes' python object.

        Returns:
            The number of bytes that were written to the tx_buffer. This is below the size of the input data if
            write_limit is set and the data exceeds it.

        Raises:
            TypeError: If the input data is not in bytes' format.
            SerialException: If the mock serial port is not open.
        """
        if not self.is_open:
            raise SerialException("Mock serial port is not open")
        if not isinstance(data, bytes):
            raise TypeError("Data must be a 'bytes' object")

        if self.write_limit is not None:
            data = data[: self.write_limit]
        self.tx_buffer += data
        return len(data)

    def read(self, size: int = 1) -> bytes:
        """Reads up to the requested 'size' number of bytes from the rx_buffer and returns them as 'bytes' object.

        Args:
            size: The number of bytes to be read from the rx_buffer.

        Returns:
            The requested number of bytes from the rx_buffer as a 'bytes' object. The object contains fewer bytes than
            requested (or none at all) if the rx_buffer runs out of data or read_chunk_size caps the returned data.

        Raises:
            SerialException: If the mock serial port is not open.
        """
        if not self.is_open:
            raise SerialException("Mock serial port is not open")

        self.read_calls += 1
        if self.read_chunk_size is not None:
            size = min(size, self.read_chunk_size)
        data = self.rx_buffer[:size]
        self.rx_buffer = self.rx_buffer[size:]
        return data

    def flush(self) -> None:
        """Simulates draining the output buffer. Fails if the mock is configured to do so.

        Raises:
            SerialException: If the mock serial port is not open or fail_flush is enabled.
        """
        if not self.is_open:
            raise SerialException("Mock serial port is not open")

        self.flush_calls += 1
        if self.fail_flush:
            raise SerialException("Mock serial port failed to drain the output buffer")

    def reset_input_buffer(self) -> None:
        """Resets the input buffer to an empty byte array.

        Raises:
            SerialException: If the mock serial port is not open.
        """
        if self.is_open:
            self.rx_buffer = b""
        else:
            raise SerialException("Mock serial port is not open")

    def reset_output_buffer(self) -> None:
        """Resets the output buffer to an empty byte array.

        Raises:
            SerialException: If the mock serial port is not open.
        """
        if self.is_open:
            self.tx_buffer = b""
        else:
            raise SerialException("Mock serial port is not open")

    @property
    def in_waiting(self) -> int:
        """Returns the number of bytes currently stored in the rx_buffer."""
        return len(self.rx_buffer)

    @property
    def out_waiting(self) -> int:
        """Returns the number of bytes currently stored in the tx_buffer."""
        return len(self.tx_buffer)
