#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Abstraction of the LIFX LAN protocol packets used by this package.

Every packet is a 36-byte little-endian header followed by a message-specific payload:

    Frame header (8 bytes):     size u16, protocol:12|addressable:1|tagged:1|origin:2 u16, source u32
    Frame address (16 bytes):   target 8 bytes, reserved 6 bytes, res_required:1|ack_required:1 u8, sequence u8
    Protocol header (12 bytes): reserved u64, message type u16, reserved u16

Only the small set of messages needed for discovery, labels, power and color is
implemented. Packets with other message types decode to UnknownMessage.

The 8-bit sequence field is echoed back by devices in their replies, and is used as the
correlation token that matches a reply to its request.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

from .internal_types import *
from .exceptions import LifxCodecError
from .constants import LIFX_PROTOCOL_NUMBER, LIFX_HEADER_SIZE, LIFX_LABEL_SIZE

_HEADER_STRUCT = struct.Struct('<HHI8s6sBBQHH')
assert _HEADER_STRUCT.size == LIFX_HEADER_SIZE

DEVICE_ID_SIZE = 6
"""The number of significant bytes in a target field; the remaining 2 bytes are zero."""

TARGET_SIZE = 8

BROADCAST_TARGET = b'\x00' * TARGET_SIZE
"""The target used for tagged (all devices) packets."""

POWER_LEVEL_ON = 65535
POWER_LEVEL_OFF = 0

class MessageType(IntEnum):
    """The LIFX message type numbers implemented by this package."""
    GET_SERVICE = 2
    STATE_SERVICE = 3
    GET_POWER = 20
    SET_POWER = 21
    STATE_POWER = 22
    GET_LABEL = 23
    STATE_LABEL = 25
    ACKNOWLEDGEMENT = 45
    LIGHT_GET = 101
    LIGHT_SET_COLOR = 102
    LIGHT_STATE = 107

def device_id_to_serial(device_id: bytes) -> str:
    """Formats a 6-byte device id as a colon separated serial; e.g., "d0:73:d5:01:02:03"."""
    return ':'.join(f"{b:02x}" for b in device_id)

def serial_to_device_id(serial: str) -> bytes:
    """Parses a serial string in "d0:73:d5:01:02:03" or "d073d5010203" form into a 6-byte device id."""
    hex_str = serial.replace(':', '').replace('-', '')
    try:
        result = bytes.fromhex(hex_str)
    except ValueError as e:
        raise ValueError(f"Invalid LIFX serial: {serial!r}") from e
    if len(result) != DEVICE_ID_SIZE:
        raise ValueError(f"Invalid LIFX serial: {serial!r}")
    return result

def _encode_label(label: str) -> bytes:
    raw = label.encode('utf-8')[:LIFX_LABEL_SIZE]
    return raw.ljust(LIFX_LABEL_SIZE, b'\x00')

def _decode_label(raw: bytes) -> str:
    return raw.split(b'\x00', 1)[0].decode('utf-8', errors='replace')

@dataclass(frozen=True)
class HsbkColor:
    """A LIFX color: hue, saturation and brightness scaled to 0..65535, and a kelvin color
       temperature used when saturation is low."""
    hue: int = 0
    saturation: int = 0
    brightness: int = 65535
    kelvin: int = 3500

    def __post_init__(self) -> None:
        for name in ('hue', 'saturation', 'brightness', 'kelvin'):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= 65535:
                raise ValueError(f"HsbkColor.{name} must be an int in 0..65535, got {value!r}")

    @classmethod
    def from_degrees(cls, hue: float, saturation: float, brightness: float, kelvin: int=3500) -> HsbkColor:
        """Create from human-friendly values: hue in degrees 0..360, saturation and brightness in 0..1."""
        return cls(
            hue=int(round(0x10000 * hue / 360)) % 0x10000,
            saturation=int(round(0xFFFF * saturation)),
            brightness=int(round(0xFFFF * brightness)),
            kelvin=kelvin,
          )

    def pack(self) -> bytes:
        return struct.pack('<HHHH', self.hue, self.saturation, self.brightness, self.kelvin)

    @classmethod
    def unpack(cls, data: bytes) -> HsbkColor:
        hue, saturation, brightness, kelvin = struct.unpack('<HHHH', data)
        return cls(hue, saturation, brightness, kelvin)


class LifxMessage:
    """Base class for a LIFX message payload. Subclasses set message_type, and
       override pack_payload/unpack_payload if they carry a payload."""

    message_type: ClassVar[int]

    reply_type: ClassVar[Optional[int]] = None
    """For query messages, the message type a device sends in reply when res_required is set."""

    def pack_payload(self) -> bytes:
        return b''

    @classmethod
    def unpack_payload(cls, payload: bytes) -> LifxMessage:
        return cls()

    def _fields(self) -> Dict[str, Any]:
        return dict(vars(self))

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        assert isinstance(other, LifxMessage)
        return self._fields() == other._fields()

    def __hash__(self) -> int:
        return hash((type(self), tuple(sorted(self._fields().items()))))

    def __str__(self) -> str:
        fields = ', '.join(f"{k}={v!r}" for k, v in self._fields().items())
        return f"{self.__class__.__name__}({fields})"

    def __repr__(self) -> str:
        return str(self)

_message_classes: Dict[int, Type[LifxMessage]] = {}

_M = TypeVar('_M', bound=Type[LifxMessage])

def _register(cls: _M) -> _M:
    _message_classes[cls.message_type] = cls
    return cls

def _unpack(fmt: str, payload: bytes, cls: Type[LifxMessage]) -> Tuple[Any, ...]:
    size = struct.calcsize(fmt)
    if len(payload) < size:
        raise LifxCodecError(f"{cls.__name__} payload too short: expected {size} bytes, got {len(payload)}")
    return struct.unpack(fmt, payload[:size])

@_register
class GetService(LifxMessage):
    message_type = MessageType.GET_SERVICE
    reply_type = MessageType.STATE_SERVICE

@_register
class StateService(LifxMessage):
    message_type = MessageType.STATE_SERVICE

    service: int
    """The service code; 1 is the UDP LAN protocol"""

    port: int
    """The port on which the service is available"""

    def __init__(self, service: int, port: int):
        self.service = service
        self.port = port

    def pack_payload(self) -> bytes:
        return struct.pack('<BI', self.service, self.port)

    @classmethod
    def unpack_payload(cls, payload: bytes) -> StateService:
        service, port = _unpack('<BI', payload, cls)
        return cls(service, port)

@_register
class GetPower(LifxMessage):
    message_type = MessageType.GET_POWER
    reply_type = MessageType.STATE_POWER

@_register
class SetPower(LifxMessage):
    message_type = MessageType.SET_POWER

    level: int

    def __init__(self, level: int):
        self.level = level

    @classmethod
    def from_bool(cls, power_on: bool) -> SetPower:
        return cls(POWER_LEVEL_ON if power_on else POWER_LEVEL_OFF)

    @property
    def is_on(self) -> bool:
        return self.level != POWER_LEVEL_OFF

    def pack_payload(self) -> bytes:
        return struct.pack('<H', self.level)

    @classmethod
    def unpack_payload(cls, payload: bytes) -> SetPower:
        level, = _unpack('<H', payload, cls)
        return cls(level)

@_register
class StatePower(SetPower):
    message_type = MessageType.STATE_POWER

@_register
class GetLabel(LifxMessage):
    message_type = MessageType.GET_LABEL
    reply_type = MessageType.STATE_LABEL

@_register
class StateLabel(LifxMessage):
    message_type = MessageType.STATE_LABEL

    label: str

    def __init__(self, label: str):
        self.label = label

    def pack_payload(self) -> bytes:
        return _encode_label(self.label)

    @classmethod
    def unpack_payload(cls, payload: bytes) -> StateLabel:
        raw, = _unpack(f'{LIFX_LABEL_SIZE}s', payload, cls)
        return cls(_decode_label(raw))

@_register
class Acknowledgement(LifxMessage):
    message_type = MessageType.ACKNOWLEDGEMENT

@_register
class LightGet(LifxMessage):
    message_type = MessageType.LIGHT_GET
    reply_type = MessageType.LIGHT_STATE

@_register
class LightSetColor(LifxMessage):
    message_type = MessageType.LIGHT_SET_COLOR

    color: HsbkColor

    duration: int
    """Transition time in milliseconds"""

    def __init__(self, color: HsbkColor, duration: int=0):
        self.color = color
        self.duration = duration

    def pack_payload(self) -> bytes:
        return struct.pack('<B', 0) + self.color.pack() + struct.pack('<I', self.duration)

    @classmethod
    def unpack_payload(cls, payload: bytes) -> LightSetColor:
        _, hue, saturation, brightness, kelvin, duration = _unpack('<BHHHHI', payload, cls)
        return cls(HsbkColor(hue, saturation, brightness, kelvin), duration)

@_register
class LightState(LifxMessage):
    message_type = MessageType.LIGHT_STATE

    color: HsbkColor
    power: int
    label: str

    def __init__(self, color: HsbkColor, power: int, label: str):
        self.color = color
        self.power = power
        self.label = label

    def pack_payload(self) -> bytes:
        return self.color.pack() + struct.pack('<hH', 0, self.power) + _encode_label(self.label) + struct.pack('<Q', 0)

    @classmethod
    def unpack_payload(cls, payload: bytes) -> LightState:
        hue, saturation, brightness, kelvin, _, power, raw_label, _ = _unpack(f'<HHHHhH{LIFX_LABEL_SIZE}sQ', payload, cls)
        return cls(HsbkColor(hue, saturation, brightness, kelvin), power, _decode_label(raw_label))

class UnknownMessage(LifxMessage):
    """A message whose type is not implemented by this package. The payload is kept undecoded."""

    payload: bytes

    def __init__(self, message_type: int, payload: bytes=b''):
        # shadows the class attribute so each instance reports its own type
        self.message_type = message_type   # type: ignore[misc]
        self.payload = payload

    def pack_payload(self) -> bytes:
        return self.payload


class LifxPacket:
    """A complete LIFX packet: header fields plus a message.

    The sequence field is the correlation token; it is both readable and writable so
    a client can stamp a fresh token into an outgoing packet.
    """

    message: LifxMessage
    """The decoded message payload"""

    source: int
    """The client identifier. Devices echo it in replies."""

    target: bytes
    """The 8-byte target; a 6-byte device id followed by two zero bytes, or all zeros when tagged."""

    sequence: int
    """The 8-bit sequence number, used as the correlation token."""

    tagged: bool
    """True if the packet is addressed to all devices"""

    ack_required: bool
    """True if the receiver should send an Acknowledgement"""

    res_required: bool
    """True if the receiver should send a State* reply"""

    def __init__(
            self,
            message: LifxMessage,
            source: int=0,
            target: Optional[bytes]=None,
            sequence: int=0,
            tagged: Optional[bool]=None,
            ack_required: bool=False,
            res_required: bool=False,
          ):
        if target is None:
            target = BROADCAST_TARGET
        elif len(target) == DEVICE_ID_SIZE:
            target = target + b'\x00\x00'
        if len(target) != TARGET_SIZE:
            raise LifxCodecError(f"LIFX target must be {DEVICE_ID_SIZE} or {TARGET_SIZE} bytes, got {len(target)}")
        if tagged is None:
            tagged = target == BROADCAST_TARGET
        self.message = message
        self.source = source
        self.target = target
        self.sequence = sequence
        self.tagged = tagged
        self.ack_required = ack_required
        self.res_required = res_required

    @property
    def message_type(self) -> int:
        return self.message.message_type

    @property
    def device_id(self) -> bytes:
        """The 6-byte device id portion of the target"""
        return self.target[:DEVICE_ID_SIZE]

    @property
    def serial(self) -> str:
        return device_id_to_serial(self.device_id)

    def to_bytes(self) -> bytes:
        return encode_packet(self)

    @classmethod
    def from_bytes(cls, data: bytes) -> LifxPacket:
        return decode_packet(data)

    def __str__(self) -> str:
        return (f"LifxPacket({self.message}, source={self.source:#x}, target={self.serial}, "
                f"sequence={self.sequence}, tagged={self.tagged}, ack={self.ack_required}, res={self.res_required})")

    def __repr__(self) -> str:
        return str(self)

def encode_packet(packet: LifxPacket) -> bytes:
    """Encodes a LifxPacket into a raw datagram."""
    payload = packet.message.pack_payload()
    if not 0 <= packet.sequence <= 255:
        raise LifxCodecError(f"LIFX sequence must be in 0..255, got {packet.sequence}")
    if not 0 <= packet.source <= 0xFFFFFFFF:
        raise LifxCodecError(f"LIFX source must be a 32-bit unsigned value, got {packet.source}")
    protocol_and_flags = LIFX_PROTOCOL_NUMBER | (1 << 12)
    if packet.tagged:
        protocol_and_flags |= (1 << 13)
    flags = 0
    if packet.res_required:
        flags |= 0x01
    if packet.ack_required:
        flags |= 0x02
    header = _HEADER_STRUCT.pack(
        LIFX_HEADER_SIZE + len(payload),
        protocol_and_flags,
        packet.source,
        packet.target,
        b'\x00' * 6,
        flags,
        packet.sequence,
        0,
        packet.message_type,
        0,
      )
    return header + payload

def decode_packet(data: bytes) -> LifxPacket:
    """Decodes a raw datagram into a LifxPacket.

    Raises LifxCodecError if the datagram is not a well-formed LIFX packet. Known message
    types with a truncated payload also raise LifxCodecError; unknown message types decode to
    UnknownMessage.
    """
    if len(data) < LIFX_HEADER_SIZE:
        raise LifxCodecError(f"LIFX datagram too short: {len(data)} bytes")
    (size, protocol_and_flags, source, target, _, flags, sequence, _, message_type, _) = \
        _HEADER_STRUCT.unpack_from(data)
    if protocol_and_flags & 0xFFF != LIFX_PROTOCOL_NUMBER:
        raise LifxCodecError(f"Not a LIFX datagram: protocol={protocol_and_flags & 0xFFF}")
    if size < LIFX_HEADER_SIZE or size > len(data):
        raise LifxCodecError(f"LIFX datagram size field {size} does not match datagram length {len(data)}")
    payload = data[LIFX_HEADER_SIZE:size]
    message_class = _message_classes.get(message_type)
    message: LifxMessage
    if message_class is None:
        message = UnknownMessage(message_type, payload)
    else:
        message = message_class.unpack_payload(payload)
    return LifxPacket(
        message,
        source=source,
        target=target,
        sequence=sequence,
        tagged=bool(protocol_and_flags & (1 << 13)),
        ack_required=bool(flags & 0x02),
        res_required=bool(flags & 0x01),
      )

def get_message_class(message_type: int) -> Optional[Type[LifxMessage]]:
    """Returns the implemented message class for a message type, or None."""
    return _message_classes.get(message_type)
