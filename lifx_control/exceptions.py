#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
  from .device import LifxDevice

class LifxError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

class LifxTimeoutError(LifxError, TimeoutError):
  """No reply arrived before a request's deadline. Expected under normal operation; the caller may retry."""
  pass

class LifxIoError(LifxError):
  """The underlying datagram transport failed to send or receive."""
  pass

class ProtocolMismatchError(LifxError):
  """A reply was decoded but it is not the message type expected for the request that was sent."""
  pass

class LifxCodecError(LifxError):
  """A datagram could not be decoded as a LIFX packet, or a packet could not be encoded."""
  pass

class LifxConfigError(LifxError):
  """A configuration value is missing or invalid."""
  pass

class DeviceOutOfRangeError(LifxError, IndexError):
  """A device registry index is outside of the registry."""
  pass

class DeviceUnreachableError(LifxError):
  """A composite command failed part way through.

  The original failure is chained as __cause__. If power_applied is True, the power
  sub-request succeeded before the color sub-request failed, leaving the device
  powered with its previous color.
  """
  device: LifxDevice
  stage: str
  power_applied: bool

  def __init__(self, device: LifxDevice, stage: str, power_applied: bool=False, msg: Optional[str]=None):
    if msg is None:
      msg = f"Device {device.display_name} unreachable during {stage} request"
      if power_applied:
        msg += " (power was applied; color is unchanged)"
    super().__init__(msg)
    self.device = device
    self.stage = stage
    self.power_applied = power_applied
