#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
A loopback LIFX device simulator for tests.

One UDP socket on 127.0.0.1 impersonates any number of devices. Every simulated device
advertises the simulator's own port, so once discovered, each device is addressed by its
device id at the same (host, port).
"""

from __future__ import annotations

import asyncio
import socket

from lifx_control.internal_types import *
from lifx_control.pkg_logging import logger
from lifx_control import (
    LifxSocket,
    LifxPacket,
    LifxMessage,
    MessageType,
    HsbkColor,
    StateService,
    StateLabel,
    StatePower,
    Acknowledgement,
    LightState,
    SetPower,
    LightSetColor,
    LifxIoError,
    LifxControlConfig,
    ConfigContext,
  )
from lifx_control.lifx_message import serial_to_device_id
from lifx_control.constants import SERVICE_UDP

class SimulatedDevice:
    """The state and behavior of one simulated device."""

    device_id: bytes
    label: str
    discovery_delays: List[float]
    """Delays, in seconds, of each StateService reply to a discovery probe. More than one
       entry sends duplicates; an empty list never answers discovery."""
    reply_delay: float
    silent: bool
    drop_types: Set[int]
    """Message types that are received but never answered"""
    mismatch_types: Set[int]
    """Message types that are answered with StatePower instead of the expected reply"""
    power_level: int
    color: HsbkColor
    received: List[LifxPacket]
    discovery_probes: int = 0

    def __init__(
            self,
            serial: str,
            label: str='',
            discovery_delays: Iterable[float]=(0.0,),
            reply_delay: float=0.0,
            silent: bool=False,
            drop_types: Iterable[int]=(),
            mismatch_types: Iterable[int]=(),
            power_level: int=0,
            color: Optional[HsbkColor]=None,
          ):
        self.device_id = serial_to_device_id(serial)
        self.label = label
        self.discovery_delays = list(discovery_delays)
        self.reply_delay = reply_delay
        self.silent = silent
        self.drop_types = set(drop_types)
        self.mismatch_types = set(mismatch_types)
        self.power_level = power_level
        self.color = HsbkColor() if color is None else color
        self.received = []

    @property
    def is_on(self) -> bool:
        return self.power_level != 0

    def received_types(self) -> List[int]:
        return [p.message_type for p in self.received]

    def handle(self, packet: LifxPacket) -> List[LifxMessage]:
        """Applies a request addressed to this device and returns the reply messages to send."""
        self.received.append(packet)
        message = packet.message
        if self.silent or packet.message_type in self.drop_types:
            return []
        state: Optional[LifxMessage] = None
        if isinstance(message, SetPower):
            self.power_level = message.level
            state = StatePower(self.power_level)
        elif isinstance(message, LightSetColor):
            self.color = message.color
            state = LightState(self.color, self.power_level, self.label)
        elif packet.message_type == MessageType.GET_LABEL:
            state = StateLabel(self.label)
        elif packet.message_type == MessageType.GET_POWER:
            state = StatePower(self.power_level)
        elif packet.message_type == MessageType.LIGHT_GET:
            state = LightState(self.color, self.power_level, self.label)
        if packet.message_type in self.mismatch_types:
            return [StatePower(self.power_level)]
        replies: List[LifxMessage] = []
        if packet.ack_required:
            replies.append(Acknowledgement())
        if packet.res_required and state is not None:
            replies.append(state)
        return replies

class LifxDeviceSimulator(LifxSocket):
    devices: List[SimulatedDevice]
    _by_id: Dict[bytes, SimulatedDevice]

    def __init__(self, devices: Iterable[SimulatedDevice]=()):
        super().__init__(sockname="simulator")
        self.devices = []
        self._by_id = {}
        for device in devices:
            self.add_device(device)

    def add_device(self, device: SimulatedDevice) -> None:
        self.devices.append(device)
        self._by_id[device.device_id] = device

    def create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind(('127.0.0.1', 0))
        sock.setblocking(False)
        return sock

    def _schedule_reply(self, delay: float, device: SimulatedDevice, request: LifxPacket, message: LifxMessage, addr: HostAndPort) -> None:
        reply = LifxPacket(
            message,
            source=request.source,
            target=device.device_id,
            sequence=request.sequence,
          )
        asyncio.get_running_loop().call_later(delay, self._send_reply, reply, addr)

    def _send_reply(self, reply: LifxPacket, addr: HostAndPort) -> None:
        if not self.is_open:
            return
        try:
            self.sendto(reply, addr)
        except LifxIoError as e:
            logger.debug(f"Simulator dropped reply {reply}: {e}")

    def dispatch_packet(self, addr: HostAndPort, packet: LifxPacket) -> None:
        if packet.message_type == MessageType.GET_SERVICE and packet.tagged:
            for device in self.devices:
                device.discovery_probes += 1
                if device.silent:
                    continue
                for delay in device.discovery_delays:
                    self._schedule_reply(delay, device, packet, StateService(SERVICE_UDP, self.local_addr[1]), addr)
            return
        device = self._by_id.get(packet.device_id)
        if device is None:
            logger.debug(f"Simulator ignoring packet for unknown device: {packet}")
            return
        for message in device.handle(packet):
            self._schedule_reply(device.reply_delay, device, packet, message, addr)

def make_test_config(simulator_addr: HostAndPort, **overrides: Any) -> LifxControlConfig:
    """A LifxControlConfig that discovers only the simulator at simulator_addr, with short timeouts."""
    data: JsonableDict = {
        "bind_address": "127.0.0.1",
        "broadcast_addresses": [f"{simulator_addr[0]}:{simulator_addr[1]}"],
        "discovery_window": 0.3,
        "request_timeout": 0.3,
        "label_timeout": 0.3,
      }
    data.update(overrides)
    cfg = LifxControlConfig()
    cfg.load_json_data(ConfigContext(), data)
    return cfg
