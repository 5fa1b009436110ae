#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
LifxController -- the synchronous facade a control surface holds.

On start() the controller:

  1. Starts an ExecutionBridge (an asyncio loop on its own thread)
  2. Opens a LifxClient on that loop, runs discovery and fetches labels, blocking the caller
     until the device registry is populated

Thereafter, every command is captured as an immutable LifxCommandJob and submitted to the
bridge without waiting for it. The caller reads the registry only between its own calls.
"""

from __future__ import annotations

from .internal_types import *
from .pkg_logging import logger
from .exceptions import LifxError
from .lifx_message import HsbkColor
from .device import LifxDevice
from .client import LifxClient
from .registry import LifxDeviceRegistry, populate_registry
from .commands import LifxCommandJob, LifxCommandExecutor
from .bridge import ExecutionBridge
from .config import LifxControlConfig

class LifxController(ContextManager['LifxController']):
    """Discovers LIFX devices once, then sends commands to them in the background."""

    config: LifxControlConfig
    bridge: ExecutionBridge
    devices: LifxDeviceRegistry
    """The discovered devices. Only mutated during start()."""

    selected_index: int = 0
    """The caller's current selection. The registry does not track selection."""

    _client: Optional[LifxClient] = None
    _executor: Optional[LifxCommandExecutor] = None

    def __init__(self, config: Optional[LifxControlConfig]=None, bridge: Optional[ExecutionBridge]=None):
        self.config = LifxControlConfig.default() if config is None else config
        self.bridge = ExecutionBridge() if bridge is None else bridge
        self.devices = LifxDeviceRegistry()

    async def _open(self, fetch_labels: bool) -> LifxDeviceRegistry:
        client = LifxClient(**self.config.client_kwargs())
        await client.start()
        self._client = client
        self._executor = LifxCommandExecutor(client, timeout=self.config.request_timeout)
        return await populate_registry(
            client,
            self.devices,
            window=self.config.discovery_window,
            label_timeout=self.config.label_timeout,
            fetch_labels=fetch_labels,
          )

    async def _close(self) -> None:
        client = self._client
        self._client = None
        self._executor = None
        if client is not None:
            await client.stop_and_wait()

    def start(self, fetch_labels: bool=True) -> LifxDeviceRegistry:
        """Starts the background loop and blocks until discovery completes. Returns the registry,
           which may be empty."""
        if not self.bridge.is_running:
            self.bridge.start()
        try:
            self.bridge.run_blocking(self._open(fetch_labels))
        except BaseException:
            self.stop()
            raise
        logger.info(f"LifxController started with {len(self.devices)} device(s)")
        return self.devices

    def stop(self) -> None:
        if self.bridge.is_running:
            try:
                self.bridge.run_blocking(self._close())
            finally:
                self.bridge.stop()

    @property
    def executor(self) -> LifxCommandExecutor:
        executor = self._executor
        if executor is None:
            raise LifxError("LifxController is not started")
        return executor

    def select(self, index: int) -> LifxDevice:
        """Selects the device at an index. Raises DeviceOutOfRangeError if there is no such device."""
        device = self.devices.lookup(index)
        self.selected_index = index
        return device

    def make_job(self, power_on: bool, color: HsbkColor, index: Optional[int]=None, duration: int=0) -> LifxCommandJob:
        """Captures the caller's current values as an immutable job for the selected (or given) device."""
        device = self.devices.lookup(self.selected_index if index is None else index)
        return LifxCommandJob.capture(device, power_on, color, duration)

    def apply(self, power_on: bool, color: HsbkColor, index: Optional[int]=None, duration: int=0) -> LifxCommandJob:
        """Submits a power+color command and returns immediately. Failures are logged by the
           background task, not reported here. Returns the submitted job."""
        job = self.make_job(power_on, color, index=index, duration=duration)
        self.bridge.submit_fire_and_forget(self.executor.run_job_logged(job))
        return job

    def apply_and_wait(self, power_on: bool, color: HsbkColor, index: Optional[int]=None, duration: int=0) -> None:
        """Runs a power+color command and blocks until it completes. Raises DeviceUnreachableError on failure."""
        job = self.make_job(power_on, color, index=index, duration=duration)
        self.bridge.run_blocking(self.executor.run_job(job))

    def __enter__(self) -> LifxController:
        self.start()
        return self

    def __exit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> Optional[bool]:
        self.stop()
        return False
