"""This module provides the MarkerSynchronizer class used to locate the start of OSP and NMEA messages inside the
continuous byte-stream produced by the GNSS receiver.

Both protocols mark the beginning of a message with a two-byte sequence: OSP messages are preceded by 0xA0 0xA2 and
NMEA messages by a line feed followed by the dollar sign. The synchronizer skips bytes until it sees the sequence or
runs out of 'patience'. Patience is spent on every byte that does not advance the search and on every read() call that
times out without returning data.
"""

from enum import IntEnum
from typing import Any

from ataraxis_base_utilities import LogLevel, console


class SynchronizerState(IntEnum):
    """Stores the states of the marker-search automaton."""

    WAIT_FIRST_MARKER = 1
    """The automaton is waiting for the first byte of the start sequence."""

    WAIT_SECOND_MARKER = 2
    """The first byte was found and the automaton is waiting for the second byte of the start sequence."""

    FOUND = 3
    """The full start sequence was found. This is the terminal state."""


# Byte classes used to index the transition table.
_FIRST = 0
_SECOND = 1
_OTHER = 2

# Maps (state, byte class) to (next state, patience cost). A repeated first marker re-arms the search at no cost, and a
# stray second marker cannot start a sequence on its own but is not treated as noise either.
_TRANSITIONS: dict[tuple[SynchronizerState, int], tuple[SynchronizerState, int]] = {
    (SynchronizerState.WAIT_FIRST_MARKER, _FIRST): (SynchronizerState.WAIT_SECOND_MARKER, 0),
    (SynchronizerState.WAIT_FIRST_MARKER, _SECOND): (SynchronizerState.WAIT_FIRST_MARKER, 0),
    (SynchronizerState.WAIT_FIRST_MARKER, _OTHER): (SynchronizerState.WAIT_FIRST_MARKER, 1),
    (SynchronizerState.WAIT_SECOND_MARKER, _FIRST): (SynchronizerState.WAIT_SECOND_MARKER, 0),
    (SynchronizerState.WAIT_SECOND_MARKER, _SECOND): (SynchronizerState.FOUND, 0),
    (SynchronizerState.WAIT_SECOND_MARKER, _OTHER): (SynchronizerState.WAIT_FIRST_MARKER, 1),
}


class MarkerSynchronizer:
    """Skips the bytes read from the serial port until the two-byte start sequence of a message is found.

    Notes:
        The automaton state is transient: each synchronize() call starts from the WAIT_FIRST_MARKER state and nothing
        carries over between calls. The counters describing the last attempt are kept only for debugging.

    Args:
        name: The name of the protocol whose messages are synchronized. Only used in debug messages.
        first_marker: The value of the first byte of the start sequence.
        second_marker: The value of the second byte of the start sequence.
        verbose: Determines whether to print the outcome of each synchronization attempt to the console.

    Attributes:
        _name: Stores the protocol name.
        _first_marker: Stores the first byte of the start sequence.
        _second_marker: Stores the second byte of the start sequence.
        _verbose: Stores the verbose flag.
        _state: The state reached by the last synchronization attempt.
        _remaining_patience: The patience left when the last synchronization attempt finished.
        _skipped_bytes: The number of noise bytes discarded during the last synchronization attempt.
        _empty_reads: The number of read() calls that returned no data during the last synchronization attempt.

    Raises:
        ValueError: If either marker is not a byte value or both markers are the same.
    """

    def __init__(self, name: str, first_marker: int, second_marker: int, *, verbose: bool = False) -> None:
        if not 0 <= first_marker <= 255 or not 0 <= second_marker <= 255:
            message = (
                f"Unable to initialize MarkerSynchronizer class. Expected integer values between 0 and 255 for "
                f"'first_marker' and 'second_marker' arguments, but encountered {first_marker} and {second_marker}."
            )
            console.error(message=message, error=ValueError)
        if first_marker == second_marker:
            message = (
                f"Unable to initialize MarkerSynchronizer class. Expected 'first_marker' and 'second_marker' "
                f"arguments to have different values, but both are set to the same value ({first_marker})."
            )
            console.error(message=message, error=ValueError)

        self._name: str = name
        self._first_marker: int = first_marker
        self._second_marker: int = second_marker
        self._verbose: bool = verbose
        self._state: SynchronizerState = SynchronizerState.WAIT_FIRST_MARKER
        self._remaining_patience: int = 0
        self._skipped_bytes: int = 0
        self._empty_reads: int = 0

    def __repr__(self) -> str:
        return (
            f"MarkerSynchronizer(name={self._name}, first_marker={hex(self._first_marker)}, "
            f"second_marker={hex(self._second_marker)})"
        )

    @property
    def state(self) -> SynchronizerState:
        """Returns the state reached by the last synchronization attempt."""
        return self._state

    @property
    def remaining_patience(self) -> int:
        """Returns the patience left when the last synchronization attempt finished."""
        return self._remaining_patience

    @property
    def skipped_bytes(self) -> int:
        """Returns the number of noise bytes discarded during the last synchronization attempt."""
        return self._skipped_bytes

    @property
    def empty_reads(self) -> int:
        """Returns the number of read() calls that timed out during the last synchronization attempt."""
        return self._empty_reads

    def advance(self, state: SynchronizerState, value: int) -> tuple[SynchronizerState, int]:
        """Resolves the automaton transition triggered by the input byte value.

        Args:
            state: The current automaton state. Must not be FOUND.
            value: The byte read from the serial port.

        Returns:
            A tuple of two elements. The first element is the next automaton state, and the second is the patience
            cost of the transition (0 or 1).
        """
        if value == self._first_marker:
            byte_class = _FIRST
        elif value == self._second_marker:
            byte_class = _SECOND
        else:
            byte_class = _OTHER
        return _TRANSITIONS[(state, byte_class)]

    def synchronize(self, port: Any, patience: int) -> bool:
        """Reads single bytes from the port until the start sequence is found or patience is exhausted.

        Args:
            port: The serial port (pySerial Serial or SerialMock) to read the bytes from.
            patience: The maximum number of non-advancing events (mismatched bytes and empty reads) to tolerate
                before giving up.

        Returns:
            True if the start sequence was found, False if patience ran out first. When the method returns True, the
            next byte available from the port is the first byte that follows the start sequence.
        """
        state = SynchronizerState.WAIT_FIRST_MARKER
        skipped_bytes = 0
        empty_reads = 0

        while state != SynchronizerState.FOUND and patience > 0:
            data = port.read(1)
            if len(data) == 0:
                empty_reads += 1
                patience -= 1
                continue

            state, cost = self.advance(state, data[0])
            skipped_bytes += cost
            patience -= cost

        self._state = state
        self._remaining_patience = patience
        self._skipped_bytes = skipped_bytes
        self._empty_reads = empty_reads

        if self._verbose:
            console.echo(
                message=(
                    f"{self._name} synchronization: state={state.name}, patience={patience}, "
                    f"skipped_bytes={skipped_bytes}, empty_reads={empty_reads}."
                ),
                level=LogLevel.DEBUG,
            )

        return state == SynchronizerState.FOUND
