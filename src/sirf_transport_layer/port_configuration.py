"""This module provides the PortConfiguration class that stores the serial port parameters used by the
SiRFTransportLayer class, and the list_available_ports() function used to discover the ports the receiver may be
connected to.

The framing engine itself never negotiates port parameters. It assumes the port already honors the baudrate and read
timeout stored in the PortConfiguration instance injected into it at initialization (or applied later via
configure_port()).
"""

from typing import Any, Optional
from dataclasses import dataclass

from serial.tools import list_ports
from ataraxis_base_utilities import console

SUPPORTED_BAUDRATES: tuple[int, ...] = (
    50,
    75,
    110,
    134,
    150,
    200,
    300,
    600,
    1200,
    1800,
    2400,
    4800,
    9600,
    19200,
    38400,
    57600,
    115200,
    230400,
)
"""The baudrates supported by the POSIX termios interface used to communicate with SiRF receivers."""

_MAXIMUM_TIMEOUT: int = 255  # Termios stores the read timeout as a single byte


@dataclass(frozen=True)
class PortConfiguration:
    """Stores the serial port parameters used to communicate with the GNSS receiver.

    Notes:
        The timeout is expressed in tenths of a second, mirroring the VTIME parameter of the termios interface. A
        timeout of 0 makes every read block until data arrives. Since the synchronization patience only limits the
        number of read attempts, a receiver that stops transmitting will block a zero-timeout engine indefinitely.

    Args:
        baudrate: The baudrate to use for the serial port. Has to be one of the values stored in 'baudrates'.
        timeout: The maximum time, in tenths of a second, a single read() call waits for the data to arrive.
        baudrates: The table of baudrates supported by the port.

    Raises:
        ValueError: If the baudrate is not found in the supported baudrates table or the timeout is outside the 0 to
            255 range.
    """

    baudrate: int = 4800
    timeout: int = 10
    baudrates: tuple[int, ...] = SUPPORTED_BAUDRATES

    def __post_init__(self) -> None:
        if self.baudrate not in self.baudrates:
            message = (
                f"Unable to configure the serial port. Expected one of the supported baudrates "
                f"{', '.join(str(rate) for rate in self.baudrates)} for 'baudrate' argument, but encountered "
                f"{self.baudrate} of type {type(self.baudrate).__name__}."
            )
            console.error(message=message, error=ValueError)
        if not isinstance(self.timeout, int) or not 0 <= self.timeout <= _MAXIMUM_TIMEOUT:
            message = (
                f"Unable to configure the serial port. Expected an integer value between 0 and {_MAXIMUM_TIMEOUT} for "
                f"'timeout' argument, but encountered {self.timeout} of type {type(self.timeout).__name__}."
            )
            console.error(message=message, error=ValueError)

    @property
    def timeout_seconds(self) -> Optional[float]:
        """Returns the read timeout in seconds, as expected by pySerial. Returns None if reads block indefinitely."""
        if self.timeout == 0:
            return None
        return self.timeout / 10

    @classmethod
    def from_port(cls, baudrate: int, timeout: Optional[float], baudrates: tuple[int, ...] = SUPPORTED_BAUDRATES):
        """Builds the configuration from the baudrate and the timeout (in seconds) reported by a pySerial port.

        Raises:
            ValueError: If the port reports a baudrate that is not found in the supported baudrates table.
        """
        tenths = 0 if timeout is None else int(round(timeout * 10))
        return cls(baudrate=baudrate, timeout=min(tenths, _MAXIMUM_TIMEOUT), baudrates=baudrates)


def list_available_ports() -> tuple[dict[str, int | str | Any], ...]:
    """Provides the information about each serial port addressable through the pySerial library.

    This function is intended to be used for discovering and selecting the serial port 'names' to use with the
    SiRFTransportLayer class.

    Returns:
        A tuple of dictionaries with each dictionary storing ID and descriptive information about each discovered
        port.
    """
    available_ports = list_ports.comports()

    information_list = [
        {"Name": port.name, "Device": port.device, "PID": port.pid, "Description": port.description}
        for port in available_ports
    ]

    return tuple(information_list)
