"""This library provides classes and methods that frame, verify and transmit OSP and NMEA messages exchanged with SiRF
IV GNSS receivers over the serial interface.

The SiRFTransportLayer class is the main entry point. The remaining classes are exposed to support testing and custom
pipelines that need direct access to the checksum or synchronization logic.
"""

from .synchronizer import SynchronizerState, MarkerSynchronizer
from .helper_modules import (
    SerialMock,
    FrameBuffer,
    calculate_osp_checksum,
    calculate_nmea_checksum,
)
from .transport_layer import (
    MAXIMUM_BUFFER_SIZE,
    ReceptionStatus,
    SiRFTransportLayer,
    ArgumentParseError,
    MessageTooLongError,
    WriteIncompleteError,
)
from .port_configuration import SUPPORTED_BAUDRATES, PortConfiguration, list_available_ports

__all__ = [
    "ArgumentParseError",
    "FrameBuffer",
    "MAXIMUM_BUFFER_SIZE",
    "MarkerSynchronizer",
    "MessageTooLongError",
    "PortConfiguration",
    "ReceptionStatus",
    "SUPPORTED_BAUDRATES",
    "SerialMock",
    "SiRFTransportLayer",
    "SynchronizerState",
    "WriteIncompleteError",
    "calculate_nmea_checksum",
    "calculate_osp_checksum",
    "list_available_ports",
]
