#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package lifx_control discovers and commands LIFX smart lights on the local network.

LIFX devices speak a stateless request/response protocol over UDP. Replies may arrive out
of order, more than once, or not at all, so each request carries a correlation token (the
8-bit LIFX sequence number) that is matched against replies, and every request has a deadline.

The package has two faces:

  - An asyncio API: LifxClient (request/reply correlation), discover()/LifxDiscoveryRequest
    (broadcast discovery), populate_registry() and LifxCommandExecutor.
  - A synchronous API for single-threaded callers such as a UI: LifxController, built on
    ExecutionBridge, which runs the asyncio loop on its own thread.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HostAndPort

from .exceptions import (
    LifxError,
    LifxTimeoutError,
    LifxIoError,
    ProtocolMismatchError,
    LifxCodecError,
    LifxConfigError,
    DeviceOutOfRangeError,
    DeviceUnreachableError,
  )

from .lifx_message import (
    LifxPacket,
    LifxMessage,
    MessageType,
    HsbkColor,
    GetService,
    StateService,
    GetPower,
    SetPower,
    StatePower,
    GetLabel,
    StateLabel,
    Acknowledgement,
    LightGet,
    LightSetColor,
    LightState,
    UnknownMessage,
    encode_packet,
    decode_packet,
  )
from .lifx_socket import LifxSocket, LifxPacketSubscriber
from .device import LifxDevice
from .client import LifxClient
from .discovery import LifxDiscoveryRequest, discover, discover_ordered
from .registry import LifxDeviceRegistry, populate_registry, fetch_label
from .commands import LifxCommandJob, LifxCommandExecutor
from .bridge import ExecutionBridge
from .controller import LifxController
from .config import LifxControlConfig, ConfigContext
from .constants import LIFX_PORT, LIFX_BROADCAST_ADDRESS, DEFAULT_DISCOVERY_WINDOW, DEFAULT_REQUEST_TIMEOUT

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HostAndPort',
    'LifxError', 'LifxTimeoutError', 'LifxIoError', 'ProtocolMismatchError', 'LifxCodecError',
    'LifxConfigError', 'DeviceOutOfRangeError', 'DeviceUnreachableError',
    'LifxPacket', 'LifxMessage', 'MessageType', 'HsbkColor',
    'GetService', 'StateService', 'GetPower', 'SetPower', 'StatePower', 'GetLabel', 'StateLabel',
    'Acknowledgement', 'LightGet', 'LightSetColor', 'LightState', 'UnknownMessage',
    'encode_packet', 'decode_packet',
    'LifxSocket', 'LifxPacketSubscriber',
    'LifxDevice',
    'LifxClient',
    'LifxDiscoveryRequest', 'discover', 'discover_ordered',
    'LifxDeviceRegistry', 'populate_registry', 'fetch_label',
    'LifxCommandJob', 'LifxCommandExecutor',
    'ExecutionBridge',
    'LifxController',
    'LifxControlConfig', 'ConfigContext',
    'LIFX_PORT', 'LIFX_BROADCAST_ADDRESS', 'DEFAULT_DISCOVERY_WINDOW', 'DEFAULT_REQUEST_TIMEOUT',
]
