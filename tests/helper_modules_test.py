"""This file contains the test functions that verify the functionality and error-handling of the FrameBuffer class,
the checksum kernels, and the SerialMock class.
"""

import numpy as np
import pytest
from serial import SerialException
from ataraxis_base_utilities import error_format

from sirf_transport_layer.helper_modules import (
    SerialMock,
    FrameBuffer,
    calculate_osp_checksum,
    calculate_nmea_checksum,
)


def test_frame_buffer_init_and_repr():
    buffer = FrameBuffer(capacity=16)
    assert buffer.capacity == 16
    assert buffer.payload_size == 0
    assert repr(buffer) == "FrameBuffer(capacity=16, payload_size=0)"


def test_frame_buffer_init_error():
    message = (
        "Unable to initialize FrameBuffer class. Expected a positive integer value for 'capacity' argument, but "
        "encountered 0 of type int."
    )
    with pytest.raises(ValueError, match=error_format(message)):
        FrameBuffer(capacity=0)


def test_frame_buffer_write_and_read():
    """Verifies that the data written to the buffer can be read back and that the returned indices are correct."""
    buffer = FrameBuffer(capacity=8)
    end_index = buffer.write_bytes(b"\x01\x02\x03", 2)
    assert end_index == 5
    assert buffer.write_byte(0x1FF, end_index) == 6
    assert buffer.read_bytes(2, 6) == b"\x01\x02\x03\xff"

    # The data property returns a copy, so modifying it does not affect the buffer.
    data = buffer.data
    data[2] = 100
    assert buffer.read_bytes(2, 3) == b"\x01"


def test_frame_buffer_payload_size():
    buffer = FrameBuffer(capacity=8)
    buffer.payload_size = 8
    assert buffer.payload_size == 8
    buffer.reset()
    assert buffer.payload_size == 0

    message = "Unable to set the payload size of the FrameBuffer. Expected a value between 0 and 8, but encountered 9."
    with pytest.raises(ValueError, match=error_format(message)):
        buffer.payload_size = 9


def test_frame_buffer_capacity_errors():
    """Verifies that the buffer rejects all accesses that do not fit inside it."""
    buffer = FrameBuffer(capacity=4)

    message = "Unable to write 3 bytes to the FrameBuffer starting at index 2. The buffer has a capacity of 4 bytes."
    with pytest.raises(ValueError, match=error_format(message)):
        buffer.write_bytes(b"\x01\x02\x03", 2)

    message = "Unable to write a byte to the FrameBuffer at index 4. The buffer has a capacity of 4 bytes."
    with pytest.raises(ValueError, match=error_format(message)):
        buffer.write_byte(1, 4)

    message = "Unable to access the FrameBuffer region [2:5]. The buffer has a capacity of 4 bytes."
    with pytest.raises(ValueError, match=error_format(message)):
        buffer.read_bytes(2, 5)

    with pytest.raises(ValueError, match=error_format(message)):
        buffer.osp_checksum(2, 5)


@pytest.mark.parametrize(
    "payload, expected",
    [
        (b"", 0),
        (b"\x01", 0x01),
        (b"\xa6\x01\x02\xff\xff", 0x2A7),
        (bytes([0xFF] * 200), (200 * 0xFF) & 0x7FFF),
        (bytes([0x80] * 300), (300 * 0x80) & 0x7FFF),
    ],
)
def test_osp_checksum(payload, expected):
    """Verifies the 15-bit running-sum checksum, including payloads whose sum overflows 15 bits."""
    assert calculate_osp_checksum(payload) == expected


def test_osp_checksum_matches_buffer_checksum():
    """Verifies that the buffer-based and bytes-based checksum calculations agree for arbitrary regions."""
    generator = np.random.default_rng(seed=42)
    payload = generator.integers(0, 256, size=500, dtype=np.uint8).tobytes()
    buffer = FrameBuffer(capacity=600)
    buffer.write_bytes(payload, 50)
    assert buffer.osp_checksum(50, 550) == calculate_osp_checksum(payload)
    assert buffer.osp_checksum(50, 550) < 0x8000


@pytest.mark.parametrize("payload_size", [1, 2, 129, 2048])
def test_checksum_kernels_on_writable_and_readonly_arrays(payload_size):
    """Verifies that both checksum kernels compile and produce the same values for the writable FrameBuffer array and
    for the read-only arrays created from 'bytes' objects.
    """
    generator = np.random.default_rng(seed=payload_size)
    payload = generator.integers(0, 256, size=payload_size, dtype=np.uint8).tobytes()

    expected_sum = payload[0]
    for value in payload[1:]:
        expected_sum = (expected_sum + value) & 0x7FFF
    expected_xor = 0
    for value in payload:
        expected_xor ^= value

    buffer = FrameBuffer(capacity=payload_size + 4)
    buffer.write_bytes(payload, 2)
    assert buffer.osp_checksum(2, payload_size + 2) == expected_sum
    assert buffer.nmea_checksum(2, payload_size + 2) == expected_xor

    assert not np.frombuffer(payload, dtype=np.uint8).flags.writeable
    assert calculate_osp_checksum(payload) == expected_sum
    assert calculate_nmea_checksum(payload) == expected_xor


@pytest.mark.parametrize(
    "sentence, expected",
    [
        (b"", 0),
        (b"GPS", 0x44),
        (b"PSRF005,A,B", 0x21),
        (b"GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,", 0x47),
    ],
)
def test_nmea_checksum(sentence, expected):
    assert calculate_nmea_checksum(sentence) == expected
    buffer = FrameBuffer(capacity=128)
    buffer.write_bytes(sentence)
    assert buffer.nmea_checksum(0, len(sentence)) == expected


def test_serial_mock_read_write():
    """Verifies the basic buffering behavior of the SerialMock class."""
    mock = SerialMock()
    assert repr(mock) == "SerialMock(open=False)"
    mock.open()
    assert mock.is_open

    assert mock.write(b"\x01\x02") == 2
    assert mock.tx_buffer == b"\x01\x02"
    assert mock.out_waiting == 2

    mock.rx_buffer = b"\x03\x04\x05"
    assert mock.in_waiting == 3
    assert mock.read(2) == b"\x03\x04"
    assert mock.read(5) == b"\x05"
    assert mock.read(1) == b""
    assert mock.read_calls == 3

    mock.reset_output_buffer()
    mock.rx_buffer = b"\x01"
    mock.reset_input_buffer()
    assert mock.tx_buffer == b""
    assert mock.rx_buffer == b""

    mock.close()
    assert not mock.is_open


def test_serial_mock_link_failures():
    """Verifies that the SerialMock class simulates fragmented reads, short writes and drain failures."""
    mock = SerialMock(read_chunk_size=2, write_limit=3, fail_flush=True)
    mock.open()

    mock.rx_buffer = b"\x01\x02\x03\x04\x05"
    assert mock.read(5) == b"\x01\x02"

    assert mock.write(b"\x01\x02\x03\x04\x05") == 3
    assert mock.tx_buffer == b"\x01\x02\x03"

    with pytest.raises(SerialException, match="Mock serial port failed to drain the output buffer"):
        mock.flush()
    assert mock.flush_calls == 1


def test_serial_mock_errors():
    mock = SerialMock()
    with pytest.raises(SerialException, match="Mock serial port is not open"):
        mock.read(1)
    with pytest.raises(SerialException, match="Mock serial port is not open"):
        mock.write(b"\x01")
    with pytest.raises(SerialException, match="Mock serial port is not open"):
        mock.flush()
    with pytest.raises(SerialException, match="Mock serial port is not open"):
        mock.reset_input_buffer()

    mock.open()
    with pytest.raises(TypeError, match="Data must be a 'bytes' object"):
        # noinspection PyTypeChecker
        mock.write("data")
