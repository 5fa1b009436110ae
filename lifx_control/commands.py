#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Device commands composed from one or more correlated requests.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .internal_types import *
from .pkg_logging import logger
from .exceptions import LifxError, LifxIoError, LifxTimeoutError, ProtocolMismatchError, DeviceUnreachableError
from .lifx_message import HsbkColor, SetPower, LightSetColor
from .device import LifxDevice

if TYPE_CHECKING:
    from .client import LifxClient

_SUB_REQUEST_ERRORS = (LifxTimeoutError, LifxIoError, ProtocolMismatchError)

@dataclass(frozen=True)
class LifxCommandJob:
    """An immutable snapshot of a command's parameters, taken when the command is submitted.

    Build with LifxCommandJob.capture(), which detaches the device from the caller's registry
    entry, so later changes to the caller's working values never affect a submitted command.
    """
    device: LifxDevice = field(compare=False)
    power_on: bool
    color: HsbkColor
    duration: int = 0

    @classmethod
    def capture(cls, device: LifxDevice, power_on: bool, color: HsbkColor, duration: int=0) -> LifxCommandJob:
        return cls(device=device.snapshot(), power_on=bool(power_on), color=color, duration=int(duration))

    def __str__(self) -> str:
        return (f"LifxCommandJob({self.device.display_name}, power={'on' if self.power_on else 'off'}, "
                f"color={self.color}, duration={self.duration})")

class LifxCommandExecutor:
    """Issues device commands over a LifxClient."""

    client: LifxClient
    timeout: Optional[float]
    """Per sub-request timeout in seconds; None uses the client default"""

    def __init__(self, client: LifxClient, timeout: Optional[float]=None):
        self.client = client
        self.timeout = timeout

    async def set_power(self, device: LifxDevice, power_on: bool) -> None:
        """Sets a device's power and waits for the acknowledgement."""
        await self.client.request(device.address, SetPower.from_bool(power_on), target=device.device_id, timeout=self.timeout)

    async def set_color(self, device: LifxDevice, color: HsbkColor, duration: int=0) -> None:
        """Sets a device's color and waits for the acknowledgement."""
        await self.client.request(
            device.address, LightSetColor(color, duration), target=device.device_id, timeout=self.timeout)

    async def set_color_and_power(
            self,
            device: LifxDevice,
            power_on: bool,
            color: HsbkColor,
            duration: int=0,
          ) -> None:
        """Sets power, then color, on one device, in that order.

        The two requests are not atomic. Any sub-request failure is raised as one
        DeviceUnreachableError, with the original failure as __cause__; if the power request
        succeeded and the color request failed, power_applied is True.
        """
        try:
            await self.set_power(device, power_on)
        except _SUB_REQUEST_ERRORS as e:
            raise DeviceUnreachableError(device, "power") from e
        try:
            await self.set_color(device, color, duration)
        except _SUB_REQUEST_ERRORS as e:
            raise DeviceUnreachableError(device, "color", power_applied=True) from e
        logger.debug(f"Set {device.display_name} power={'on' if power_on else 'off'} color={color}")

    async def run_job(self, job: LifxCommandJob) -> None:
        await self.set_color_and_power(job.device, job.power_on, job.color, job.duration)

    async def run_job_logged(self, job: LifxCommandJob) -> bool:
        """Runs a job, logging rather than raising any LifxError. Intended for fire-and-forget
           submission, where no one observes the result. Returns True on success."""
        try:
            await self.run_job(job)
        except LifxError as e:
            cause = e.__cause__
            logger.warning(f"Command failed: {job}: {e}" + ("" if cause is None else f": {cause}"))
            return False
        logger.info(f"Command succeeded: {job}")
        return True
