"""This file contains the test functions that verify the functionality and error-handling of the MarkerSynchronizer
class. Special attention is paid to the patience accounting, as it determines how long the reception methods block on
noisy or silent links.
"""

import pytest
from ataraxis_base_utilities import error_format

from sirf_transport_layer.synchronizer import SynchronizerState, MarkerSynchronizer
from sirf_transport_layer.helper_modules import SerialMock


@pytest.fixture()
def port() -> SerialMock:
    """Returns an opened SerialMock instance."""
    mock = SerialMock()
    mock.open()
    return mock


@pytest.fixture()
def osp_synchronizer() -> MarkerSynchronizer:
    """Returns a MarkerSynchronizer configured to find the OSP start sequence."""
    return MarkerSynchronizer("OSP", 0xA0, 0xA2)


def test_init_and_repr(osp_synchronizer):
    assert repr(osp_synchronizer) == "MarkerSynchronizer(name=OSP, first_marker=0xa0, second_marker=0xa2)"
    assert osp_synchronizer.state == SynchronizerState.WAIT_FIRST_MARKER


def test_init_errors():
    message = (
        "Unable to initialize MarkerSynchronizer class. Expected 'first_marker' and 'second_marker' arguments to "
        "have different values, but both are set to the same value (160)."
    )
    with pytest.raises(ValueError, match=error_format(message)):
        MarkerSynchronizer("OSP", 0xA0, 0xA0)

    message = (
        "Unable to initialize MarkerSynchronizer class. Expected integer values between 0 and 255 for "
        "'first_marker' and 'second_marker' arguments, but encountered 300 and 162."
    )
    with pytest.raises(ValueError, match=error_format(message)):
        MarkerSynchronizer("OSP", 300, 0xA2)


@pytest.mark.parametrize(
    "state, value, expected_state, expected_cost",
    [
        (SynchronizerState.WAIT_FIRST_MARKER, 0xA0, SynchronizerState.WAIT_SECOND_MARKER, 0),
        (SynchronizerState.WAIT_FIRST_MARKER, 0xA2, SynchronizerState.WAIT_FIRST_MARKER, 0),
        (SynchronizerState.WAIT_FIRST_MARKER, 0x11, SynchronizerState.WAIT_FIRST_MARKER, 1),
        (SynchronizerState.WAIT_SECOND_MARKER, 0xA0, SynchronizerState.WAIT_SECOND_MARKER, 0),
        (SynchronizerState.WAIT_SECOND_MARKER, 0xA2, SynchronizerState.FOUND, 0),
        (SynchronizerState.WAIT_SECOND_MARKER, 0x11, SynchronizerState.WAIT_FIRST_MARKER, 1),
    ],
)
def test_advance(osp_synchronizer, state, value, expected_state, expected_cost):
    """Verifies every transition of the automaton."""
    assert osp_synchronizer.advance(state, value) == (expected_state, expected_cost)


def test_synchronize_finds_sequence(osp_synchronizer, port):
    """Verifies that a successful synchronization leaves the bytes that follow the start sequence unread."""
    port.rx_buffer = bytes([0x10, 0x20, 0xA0, 0xA2, 0x00, 0x05])
    assert osp_synchronizer.synchronize(port, patience=10)
    assert port.rx_buffer == bytes([0x00, 0x05])
    assert osp_synchronizer.state == SynchronizerState.FOUND
    assert osp_synchronizer.skipped_bytes == 2
    assert osp_synchronizer.remaining_patience == 8


def test_synchronize_consumes_exact_patience_on_noise(osp_synchronizer, port):
    """Verifies that a stream without the start sequence consumes exactly 'patience' bytes."""
    port.rx_buffer = bytes([0x55]) * 50
    assert not osp_synchronizer.synchronize(port, patience=10)
    assert port.read_calls == 10
    assert port.in_waiting == 40
    assert osp_synchronizer.skipped_bytes == 10
    assert osp_synchronizer.empty_reads == 0
    assert osp_synchronizer.remaining_patience == 0


def test_synchronize_consumes_exact_patience_on_silence(osp_synchronizer, port):
    """Verifies that reads returning no data are charged against patience."""
    assert not osp_synchronizer.synchronize(port, patience=7)
    assert port.read_calls == 7
    assert osp_synchronizer.empty_reads == 7
    assert osp_synchronizer.skipped_bytes == 0


def test_synchronize_zero_patience(osp_synchronizer, port):
    """Verifies that the synchronizer does not read anything if it has no patience."""
    port.rx_buffer = bytes([0xA0, 0xA2])
    assert not osp_synchronizer.synchronize(port, patience=0)
    assert port.read_calls == 0


def test_synchronize_repeated_first_marker_is_free(osp_synchronizer, port):
    """Verifies that repeated first markers re-arm the search without spending patience."""
    port.rx_buffer = bytes([0xA0, 0xA0, 0xA0, 0xA0, 0xA2])
    assert osp_synchronizer.synchronize(port, patience=1)
    assert osp_synchronizer.skipped_bytes == 0


def test_synchronize_stray_second_marker_is_free(osp_synchronizer, port):
    """Verifies that a second marker seen while waiting for the first marker does not spend patience."""
    port.rx_buffer = bytes([0xA2, 0xA2, 0xA2, 0xA0, 0xA2])
    assert osp_synchronizer.synchronize(port, patience=1)
    assert osp_synchronizer.remaining_patience == 1


def test_synchronize_broken_sequence_costs_patience(osp_synchronizer, port):
    """Verifies that a noise byte between the markers resets the search and spends patience."""
    port.rx_buffer = bytes([0xA0, 0x55, 0xA2, 0xA0, 0xA2])
    assert not osp_synchronizer.synchronize(port, patience=1)
    assert osp_synchronizer.state == SynchronizerState.WAIT_FIRST_MARKER

    port.rx_buffer = bytes([0xA0, 0x55, 0xA2, 0xA0, 0xA2])
    assert osp_synchronizer.synchronize(port, patience=2)
    assert osp_synchronizer.skipped_bytes == 1


def test_synchronize_state_does_not_persist(osp_synchronizer, port):
    """Verifies that a first marker found at the end of a failed attempt is not carried into the next attempt."""
    port.rx_buffer = bytes([0x55, 0xA0])
    assert not osp_synchronizer.synchronize(port, patience=2)
    assert osp_synchronizer.state == SynchronizerState.WAIT_SECOND_MARKER

    port.rx_buffer = bytes([0xA2, 0x55])
    assert not osp_synchronizer.synchronize(port, patience=1)
    assert osp_synchronizer.state == SynchronizerState.WAIT_FIRST_MARKER


def test_synchronize_nmea_markers(port):
    """Verifies that the synchronizer finds the start of NMEA sentences in an ASCII stream."""
    synchronizer = MarkerSynchronizer("NMEA", 0x0A, 0x24)
    port.rx_buffer = b"A,1*00\r\n\n$GPGGA"
    assert synchronizer.synchronize(port, patience=20)
    assert port.rx_buffer == b"GPGGA"

    # A '$' that does not follow a line feed is not the start of a sentence.
    port.rx_buffer = b"$GPS\n$GSA"
    assert synchronizer.synchronize(port, patience=20)
    assert port.rx_buffer == b"GSA"
