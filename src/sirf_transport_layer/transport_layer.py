"""This file stores the SiRFTransportLayer class, which provides the high-level API that encapsulates all methods
necessary to exchange OSP and NMEA messages with SiRF IV GNSS receivers over the serial interface.

All features of the class are available through 4 main methods: read_osp_message(), write_osp_command(),
read_nmea_message() and write_nmea_command(). Read methods return a ReceptionStatus code that tells the caller whether a
valid message was received; write methods raise an error if the command could not be built or transmitted. See method
and class docstrings for more information.
"""

import sys
from enum import IntEnum
from typing import Optional

from serial import Serial, SerialException
from ataraxis_base_utilities import LogLevel, console

from .synchronizer import MarkerSynchronizer
from .helper_modules import SerialMock, FrameBuffer
from .port_configuration import PortConfiguration

MAXIMUM_BUFFER_SIZE: int = 2052
"""The size of the frame buffer: the maximum OSP payload size (2048) + length (2) + checksum (2) bytes."""

OSP_START_1: int = 0xA0
OSP_START_2: int = 0xA2
OSP_END_1: int = 0xB0
OSP_END_2: int = 0xB3
LINE_FEED: int = 0x0A
CARRIAGE_RETURN: int = 0x0D
DOLLAR: int = 0x24

_OSP_OVERHEAD: int = 4  # Length (2) + checksum (2) bytes stored next to the payload.
_OSP_FRAME_OVERHEAD: int = 8  # Start (2) + length (2) + checksum (2) + end (2) bytes.
_NMEA_MINIMUM_SIZE: int = 5  # The checksum suffix (3) + at least 2 sentence characters.
_NMEA_CHECKSUM_SIZE: int = 3  # The '*' delimiter followed by two hexadecimal digits.

# The errors raised by pySerial ports when the link fails during a write or a drain. On POSIX systems, flush() calls
# termios.tcdrain(), which raises termios.error rather than an OSError subclass.
if sys.platform == "win32":
    _PORT_ERRORS: tuple[type[Exception], ...] = (SerialException, OSError)
else:
    import termios

    _PORT_ERRORS = (SerialException, OSError, termios.error)


class ReceptionStatus(IntEnum):
    """Stores the status codes returned by the SiRFTransportLayer class methods that receive messages.

    Only OK means that a valid message is available from the payload buffer. All other codes describe why the
    reception attempt failed. All failures are recoverable: the next reception attempt overwrites the frame buffer.
    """

    OK = 0
    """A correctly formatted message was received and its checksum matched."""

    CHECKSUM_MISMATCH = 1
    """The message was received, but the checksum transmitted with it did not match the checksum of its payload."""

    TRUNCATED_PAYLOAD = 2
    """The stream ended before all OSP payload and checksum bytes declared by the length field were received."""

    LENGTH_OUT_OF_RANGE = 3
    """The OSP length field declared a payload size of 0 or a size that does not fit inside the frame buffer."""

    LENGTH_READ_FAILED = 4
    """Unable to read both bytes of the OSP length field."""

    SYNC_TIMEOUT = 5
    """The start sequence of the message was not found before the patience ran out."""

    MESSAGE_TOO_SHORT = 6
    """The NMEA sentence terminated before it could hold the shortest valid sentence (XX*SS)."""

    STREAM_EXHAUSTED = 7
    """The stream ended, or the frame buffer filled up, before the carriage return terminating the NMEA sentence."""


class MessageTooLongError(ValueError):
    """Raised when an outgoing command does not fit inside the frame buffer."""


class ArgumentParseError(ValueError):
    """Raised when the arguments of an outgoing command cannot be converted to message bytes."""


class WriteIncompleteError(RuntimeError):
    """Raised when the serial port fails to transmit the entire outgoing command."""


class SiRFTransportLayer:
    """Provides methods to exchange OSP (binary) and NMEA (ASCII) messages with a SiRF IV GNSS receiver connected over
    the UART or USB Serial interface.

    This class functions as a central hub that owns the serial port interface (via pySerial third-party library), the
    frame buffer and the start-sequence synchronizers for both protocols. Received messages are validated and stored in
    the frame buffer, from which they can be copied via the 'payload' property. Outgoing commands are assembled in the
    same buffer and written to the serial port in a single call, followed by a flush.

    Notes:
        The class holds a single frame buffer that is reused by every read and write call. As a consequence, only one
        call may be in progress at any time, and the class is not safe to use from multiple threads without external
        locking. Any payload that needs to outlive the next call must be copied out via the 'payload' property.

        All reads block for at most the timeout stored in the port configuration. The 'patience' arguments of the read
        methods limit the number of skipped bytes and timed-out reads tolerated while searching for the start of a
        message. They do not limit the wall-clock duration of the search.

    Args:
        port: The name of the serial port to connect to, e.g.: 'COM3' or '/dev/ttyUSB0'. You can use the
            list_available_ports() function to get a list of discoverable serial port names.
        configuration: The PortConfiguration instance that stores the baudrate and the read timeout to use. If not
            provided, the default configuration (4800 bps, 1 second timeout) is used.
        buffer_size: The capacity of the frame buffer, in bytes. Has to be large enough to hold the shortest OSP
            command frame.
        test_mode: Determines whether the library uses a real pySerial Serial class or a SerialMock class. Only used
            during testing and should always be disabled otherwise.
        verbose: Determines whether to print the details of each reception and transmission to the console. This is
            only used during debugging and should be disabled during most runtimes.

    Attributes:
        _port: Depending on the test_mode flag, stores either a SerialMock or Serial object that provides the serial
            port interface.
        _configuration: Stores the PortConfiguration currently applied to the port.
        _buffer: Stores the FrameBuffer used to assemble incoming and outgoing frames.
        _osp_synchronizer: Stores the MarkerSynchronizer that finds the start of OSP messages.
        _nmea_synchronizer: Stores the MarkerSynchronizer that finds the start of NMEA messages.
        _verbose: Stores the verbose flag.

    Raises:
        TypeError: If any of the input arguments is not of the expected type.
        ValueError: If any of the input arguments have invalid values.
        SerialException: If wrapped pySerial class runs into an error.
    """

    def __init__(
        self,
        port: str,
        configuration: Optional[PortConfiguration] = None,
        buffer_size: int = MAXIMUM_BUFFER_SIZE,
        *,
        test_mode: bool = False,
        verbose: bool = False,
    ) -> None:
        if not isinstance(port, str):
            message = (
                f"Unable to initialize SiRFTransportLayer class. Expected a string value for 'port' argument, but "
                f"encountered {port} of type {type(port).__name__}."
            )
            console.error(message=message, error=TypeError)
        if configuration is None:
            configuration = PortConfiguration()
        elif not isinstance(configuration, PortConfiguration):
            message = (
                f"Unable to initialize SiRFTransportLayer class. Expected a PortConfiguration instance for "
                f"'configuration' argument, but encountered {configuration} of type {type(configuration).__name__}."
            )
            console.error(message=message, error=TypeError)
        if not isinstance(buffer_size, int) or buffer_size <= _OSP_FRAME_OVERHEAD:
            message = (
                f"Unable to initialize SiRFTransportLayer class. Expected an integer value above "
                f"{_OSP_FRAME_OVERHEAD} for 'buffer_size' argument, but encountered {buffer_size} of type "
                f"{type(buffer_size).__name__}."
            )
            console.error(message=message, error=ValueError)

        # If the runtime is called in the verbose mode, ensures the console is enabled.
        self._verbose: bool = verbose
        if verbose and not console.enabled:
            console.enable()

        self._port: SerialMock | Serial
        if not test_mode:
            self._port = Serial(port, configuration.baudrate, timeout=configuration.timeout_seconds)
        else:
            self._port = SerialMock()
            self._port.baudrate = configuration.baudrate
            self._port.timeout = configuration.timeout_seconds
            self._port.open()

        self._configuration: PortConfiguration = configuration
        self._buffer: FrameBuffer = FrameBuffer(capacity=buffer_size)
        self._osp_synchronizer = MarkerSynchronizer("OSP", OSP_START_1, OSP_START_2, verbose=verbose)
        self._nmea_synchronizer = MarkerSynchronizer("NMEA", LINE_FEED, DOLLAR, verbose=verbose)

    def __del__(self) -> None:
        """Ensures proper resource release prior to garbage-collecting class instance."""
        if hasattr(self, "_port"):
            self._port.close()

    def __repr__(self) -> str:
        """Returns a string representation of the SiRFTransportLayer class instance."""
        if isinstance(self._port, Serial):
            port_name = f"port='{self._port.name}'"
        else:
            port_name = "port=MOCKED"
        return (
            f"SiRFTransportLayer({port_name}, baudrate={self._configuration.baudrate}, "
            f"timeout={self._configuration.timeout}, buffer_size={self._buffer.capacity})"
        )

    @property
    def payload(self) -> bytes:
        """Returns a copy of the payload of the last successfully received message.

        For OSP messages, the first payload byte is the message ID. For NMEA messages, the payload is the sentence
        text between the '$' and the '*' characters.
        """
        return self._buffer.read_bytes(0, self._buffer.payload_size)

    @property
    def payload_size(self) -> int:
        """Returns the size of the payload of the last successfully received message."""
        return self._buffer.payload_size

    @property
    def nmea_sentence(self) -> str:
        """Returns the payload of the last successfully received NMEA message as a string."""
        return self.payload.decode("ascii", errors="replace")

    @property
    def frame_buffer(self) -> bytes:
        """Returns a copy of the entire frame buffer. Use this to inspect the last assembled or rejected frame."""
        return self._buffer.read_bytes(0, self._buffer.capacity)

    @property
    def port_configuration(self) -> PortConfiguration:
        """Returns the PortConfiguration currently applied to the serial port.

        The configuration is re-read from the port, so that changes applied to the port outside the class are
        reflected in the returned instance.
        """
        return PortConfiguration.from_port(
            baudrate=self._port.baudrate, timeout=self._port.timeout, baudrates=self._configuration.baudrates
        )

    def configure_port(self, configuration: PortConfiguration) -> None:
        """Applies the baudrate and the read timeout stored in the input configuration to the serial port.

        Args:
            configuration: The PortConfiguration instance to apply.

        Raises:
            TypeError: If the configuration is not a PortConfiguration instance.
        """
        if not isinstance(configuration, PortConfiguration):
            message = (
                f"Unable to configure the serial port. Expected a PortConfiguration instance for 'configuration' "
                f"argument, but encountered {configuration} of type {type(configuration).__name__}."
            )
            console.error(message=message, error=TypeError)

        self._port.baudrate = configuration.baudrate
        self._port.timeout = configuration.timeout_seconds
        self._configuration = configuration

    def close(self) -> None:
        """Closes the serial port."""
        self._port.close()

    def read_osp_message(self, patience: int = MAXIMUM_BUFFER_SIZE * 2) -> ReceptionStatus:
        """Receives the next OSP message from the serial port and verifies its integrity.

        The method skips bytes until it finds the 0xA0 0xA2 start sequence, reads the big-endian payload length,
        the payload and the checksum that follows it. The end sequence (0xB0 0xB3) is left unread: the next call
        discards it while synchronizing.

        Notes:
            The checksum is the sum of all payload bytes, truncated to 15 bits after each addition.

            If the method returns OK, the payload (message ID followed by the message body) is available via the
            'payload' property.

        Args:
            patience: The maximum number of skipped bytes and timed-out reads to tolerate while searching for the
                start sequence.

        Returns:
            The ReceptionStatus code that communicates the outcome of the reception attempt.
        """
        self._buffer.reset()

        if not self._osp_synchronizer.synchronize(self._port, patience):
            return self._report(ReceptionStatus.SYNC_TIMEOUT, "OSP")

        length_bytes = self._port.read(2)
        if len(length_bytes) != 2:
            return self._report(ReceptionStatus.LENGTH_READ_FAILED, "OSP")

        payload_size = int.from_bytes(length_bytes, "big")
        if not 0 < payload_size < self._buffer.capacity - _OSP_OVERHEAD:
            return self._report(ReceptionStatus.LENGTH_OUT_OF_RANGE, "OSP", f"declared length={payload_size}")

        # Reads the payload and the checksum. Stops early if a read returns no data, as this means the stream
        # ran dry.
        required_bytes = payload_size + 2
        stored_bytes = 0
        while stored_bytes < required_bytes:
            data = self._port.read(required_bytes - stored_bytes)
            if len(data) == 0:
                break
            stored_bytes = self._buffer.write_bytes(data, stored_bytes)

        if stored_bytes < required_bytes:
            return self._report(
                ReceptionStatus.TRUNCATED_PAYLOAD, "OSP", f"received {stored_bytes} of {required_bytes} bytes"
            )

        computed_checksum = self._buffer.osp_checksum(0, payload_size)
        received_checksum = int.from_bytes(self._buffer.read_bytes(payload_size, required_bytes), "big")
        if computed_checksum != received_checksum:
            return self._report(
                ReceptionStatus.CHECKSUM_MISMATCH,
                "OSP",
                f"received {hex(received_checksum)}, computed {hex(computed_checksum)}",
            )

        self._buffer.payload_size = payload_size
        return self._report(ReceptionStatus.OK, "OSP", f"message ID={self.payload[0]}, length={payload_size}")

    def write_osp_command(self, message_id: int, arguments: str = "", base: int = 16) -> None:
        """Builds the OSP command frame and sends it to the receiver.

        Notes:
            The constructed frame has the following format:
            [0xA0 0xA2]_[PAYLOAD LENGTH]_[MESSAGE ID]_[ARGUMENT BYTES]_[CHECKSUM]_[0xB0 0xB3]
            where the length and the checksum are stored as big-endian 2-byte integers. The message ID counts as part
            of the payload.

        Args:
            message_id: The ID of the OSP command. Has to be between 0 and 255.
            arguments: The command body, as a string of whitespace-separated integers. Each integer is parsed using
                the requested base and truncated to its lowest 8 bits.
            base: The base used to write the arguments (16, 10, ...).

        Raises:
            ValueError: If the message ID or the base is not valid.
            ArgumentParseError: If any of the arguments is not a valid integer in the requested base.
            MessageTooLongError: If the command frame does not fit inside the frame buffer.
            WriteIncompleteError: If the serial port fails to transmit or drain the entire frame.
        """
        if not isinstance(message_id, int) or not 0 <= message_id <= 255:
            message = (
                f"Unable to send the OSP command. Expected an integer value between 0 and 255 for 'message_id' "
                f"argument, but encountered {message_id} of type {type(message_id).__name__}."
            )
            console.error(message=message, error=ValueError)
        if base != 0 and not 2 <= base <= 36:
            message = (
                f"Unable to send the OSP command {message_id}. Expected 0 or an integer value between 2 and 36 for "
                f"'base' argument, but encountered {base}."
            )
            console.error(message=message, error=ValueError)

        tokens = arguments.split()
        payload_size = 1 + len(tokens)
        frame_size = payload_size + _OSP_FRAME_OVERHEAD
        if frame_size > self._buffer.capacity:
            message = (
                f"Unable to send the OSP command {message_id}. The command frame size ({frame_size} bytes) exceeds "
                f"the frame buffer capacity ({self._buffer.capacity} bytes)."
            )
            console.error(message=message, error=MessageTooLongError)

        # Parses all arguments before touching the buffer, so that an invalid command leaves no partial frame behind.
        values = []
        for token in tokens:
            try:
                values.append(int(token, base) & 0xFF)
            except ValueError:
                message = (
                    f"Unable to send the OSP command {message_id}. Unable to parse the argument '{token}' as a "
                    f"base-{base} integer."
                )
                console.error(message=message, error=ArgumentParseError)

        self._buffer.reset()
        index = self._buffer.write_bytes(bytes([OSP_START_1, OSP_START_2]), 0)
        index = self._buffer.write_bytes(payload_size.to_bytes(2, "big"), index)
        payload_start = index
        index = self._buffer.write_byte(message_id, index)
        index = self._buffer.write_bytes(bytes(values), index)
        checksum = self._buffer.osp_checksum(payload_start, index)
        index = self._buffer.write_bytes(checksum.to_bytes(2, "big"), index)
        index = self._buffer.write_bytes(bytes([OSP_END_1, OSP_END_2]), index)

        self._transmit(index, f"OSP command {message_id}")

    def read_nmea_message(self, patience: int = MAXIMUM_BUFFER_SIZE) -> ReceptionStatus:
        """Receives the next NMEA sentence from the serial port and verifies its integrity.

        The method skips characters until it finds the start of a sentence (a line feed followed by '$'), then stores
        the sentence characters until it reads the terminating carriage return. The last three stored characters are
        the '*' checksum delimiter and two hexadecimal checksum digits.

        Notes:
            The checksum is the XOR of all sentence characters between '$' and '*'.

            If the method returns OK, the sentence text between '$' and '*' is available via the 'payload' and
            'nmea_sentence' properties.

        Args:
            patience: The maximum number of skipped characters and timed-out reads to tolerate while searching for the
                start of the sentence.

        Returns:
            The ReceptionStatus code that communicates the outcome of the reception attempt.
        """
        self._buffer.reset()

        if not self._nmea_synchronizer.synchronize(self._port, patience):
            return self._report(ReceptionStatus.SYNC_TIMEOUT, "NMEA")

        stored_bytes = 0
        while True:
            data = self._port.read(1)
            if len(data) == 0:
                return self._report(ReceptionStatus.STREAM_EXHAUSTED, "NMEA", f"{stored_bytes} characters received")
            if data[0] == CARRIAGE_RETURN:
                break
            if stored_bytes == self._buffer.capacity:
                return self._report(ReceptionStatus.STREAM_EXHAUSTED, "NMEA", "frame buffer is full")
            stored_bytes = self._buffer.write_byte(data[0], stored_bytes)

        if stored_bytes < _NMEA_MINIMUM_SIZE:
            return self._report(ReceptionStatus.MESSAGE_TOO_SHORT, "NMEA", f"{stored_bytes} characters received")

        payload_size = stored_bytes - _NMEA_CHECKSUM_SIZE
        computed_checksum = self._buffer.nmea_checksum(0, payload_size)
        digits = self._buffer.read_bytes(payload_size + 1, stored_bytes)
        try:
            received_checksum = int(digits, 16)
        except ValueError:
            received_checksum = -1
        if computed_checksum != received_checksum:
            return self._report(
                ReceptionStatus.CHECKSUM_MISMATCH,
                "NMEA",
                f"received {digits.decode('ascii', errors='replace')}, computed {computed_checksum:02X}",
            )

        self._buffer.payload_size = payload_size
        return self._report(ReceptionStatus.OK, "NMEA", self.nmea_sentence)

    def write_nmea_command(self, message_id: int, arguments: str) -> None:
        """Builds the proprietary NMEA ($PSRF) command sentence and sends it to the receiver.

        Notes:
            The constructed sentence has the following format: $PSRF<ID>,<ARGUMENTS>*<CHECKSUM><CR><LF>, where the ID is
            written as a 3-digit zero-padded number and the checksum as 2 uppercase hexadecimal digits.

        Args:
            message_id: The ID of the command. Has to be between 0 and 999.
            arguments: The command parameters, as a comma-separated list.

        Raises:
            ArgumentParseError: If the message ID is not valid or the arguments contain non-ASCII characters.
            MessageTooLongError: If the command sentence does not fit inside the frame buffer.
            WriteIncompleteError: If the serial port fails to transmit or drain the entire sentence.
        """
        if not isinstance(message_id, int) or not 0 <= message_id <= 999:
            message = (
                f"Unable to send the NMEA command. Expected an integer value between 0 and 999 for 'message_id' "
                f"argument, but encountered {message_id} of type {type(message_id).__name__}."
            )
            console.error(message=message, error=ArgumentParseError)

        try:
            sentence = f"$PSRF{message_id:03d},{arguments}".encode("ascii")
        except UnicodeEncodeError:
            message = (
                f"Unable to send the NMEA command $PSRF{message_id:03d}. The command arguments '{arguments}' contain "
                f"non-ASCII characters."
            )
            console.error(message=message, error=ArgumentParseError)

        sentence_size = len(sentence) + _NMEA_CHECKSUM_SIZE + 2
        if sentence_size > self._buffer.capacity:
            message = (
                f"Unable to send the NMEA command $PSRF{message_id:03d}. The command sentence size ({sentence_size} "
                f"bytes) exceeds the frame buffer capacity ({self._buffer.capacity} bytes)."
            )
            console.error(message=message, error=MessageTooLongError)

        self._buffer.reset()
        index = self._buffer.write_bytes(sentence, 0)
        checksum = self._buffer.nmea_checksum(1, index)
        index = self._buffer.write_bytes(f"*{checksum:02X}\r\n".encode("ascii"), index)

        self._transmit(index, f"NMEA command $PSRF{message_id:03d}")

    def _transmit(self, frame_size: int, description: str) -> None:
        """Writes the first frame_size bytes of the frame buffer to the serial port and waits for them to be sent.

        Raises:
            WriteIncompleteError: If the port does not accept all bytes or fails to write or drain them.
        """
        frame = self._buffer.read_bytes(0, frame_size)
        try:
            written_bytes = self._port.write(frame)
        except _PORT_ERRORS as exception:
            message = f"Unable to send the {description}. Failed to write the frame to the serial port: {exception}"
            console.error(message=message, error=WriteIncompleteError)

        if self._verbose:
            console.echo(
                message=f"Sent {description} ({written_bytes} of {frame_size} bytes): {frame.hex(' ').upper()}",
                level=LogLevel.DEBUG,
            )

        try:
            self._port.flush()
        except _PORT_ERRORS as exception:
            message = f"Unable to send the {description}. Failed to drain the serial port output buffer: {exception}"
            console.error(message=message, error=WriteIncompleteError)

        if written_bytes != frame_size:
            message = (
                f"Unable to send the {description}. The serial port accepted {written_bytes} out of {frame_size} "
                f"frame bytes."
            )
            console.error(message=message, error=WriteIncompleteError)

    def _report(self, status: ReceptionStatus, protocol: str, details: str = "") -> ReceptionStatus:
        """Prints the reception status to the console if the class runs in verbose mode and returns the status."""
        if self._verbose:
            message = f"{protocol} reception: {status.name}"
            if details:
                message += f" ({details})"
            console.echo(message=message, level=LogLevel.DEBUG)
        return status
