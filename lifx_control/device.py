#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
LifxDevice -- a LIFX device seen on the network.
"""

from __future__ import annotations

import time

from .internal_types import *
from .lifx_message import device_id_to_serial, DEVICE_ID_SIZE

class LifxDevice:
    """A LIFX device identified by its stable device id.

    Two LifxDevice instances compare equal (and hash the same) iff they have the same
    device_id, regardless of address or label, so that several observations of one
    physical device are recognized as a single entity.
    """

    device_id: bytes
    """The 6-byte device id (the LIFX "target", which is the device MAC address)."""

    address: HostAndPort
    """The (host, port) at which the device accepts LAN protocol requests. May change between sessions."""

    label: Optional[str] = None
    """The human-readable label, or None if it has not been fetched."""

    last_seen_time: float
    """The time.monotonic() time at which the device was last observed"""

    def __init__(self, device_id: bytes, address: HostAndPort, label: Optional[str]=None):
        if len(device_id) != DEVICE_ID_SIZE:
            raise ValueError(f"LIFX device id must be {DEVICE_ID_SIZE} bytes, got {len(device_id)}")
        self.device_id = bytes(device_id)
        self.address = (address[0], address[1])
        self.label = label
        self.last_seen_time = time.monotonic()

    @property
    def serial(self) -> str:
        return device_id_to_serial(self.device_id)

    @property
    def display_name(self) -> str:
        """The label if known, otherwise the serial"""
        return self.serial if self.label is None or self.label == '' else self.label

    def update_from(self, other: LifxDevice) -> None:
        """Refresh transient fields in place from a newer observation of the same device."""
        assert other.device_id == self.device_id
        if other.address != self.address:
            self.address = other.address
        if other.label is not None:
            self.label = other.label
        self.last_seen_time = max(self.last_seen_time, other.last_seen_time)

    def snapshot(self) -> LifxDevice:
        """Returns a detached copy, safe to hand to a task running on another thread."""
        result = LifxDevice(self.device_id, self.address, self.label)
        result.last_seen_time = self.last_seen_time
        return result

    def to_jsonable(self) -> JsonableDict:
        return {
            "serial": self.serial,
            "address": f"{self.address[0]}:{self.address[1]}",
            "label": self.label,
          }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LifxDevice):
            return NotImplemented
        return self.device_id == other.device_id

    def __hash__(self) -> int:
        return hash(self.device_id)

    def __str__(self) -> str:
        return f"LifxDevice({self.serial} @ {self.address[0]}:{self.address[1]}, label={self.label!r})"

    def __repr__(self) -> str:
        return str(self)
