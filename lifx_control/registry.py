#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
LifxDeviceRegistry -- the ordered collection of devices found by discovery, with their labels.
"""

from __future__ import annotations


import asyncio

from requests.structures import CaseInsensitiveDict

from .internal_types import *
from .pkg_logging import logger
from .constants import DEFAULT_LABEL_TIMEOUT, MAX_CONCURRENT_LABEL_REQUESTS
from .exceptions import DeviceOutOfRangeError, LifxTimeoutError, ProtocolMismatchError
from .lifx_message import GetLabel, StateLabel
from .device import LifxDevice
from .discovery import discover_ordered

if TYPE_CHECKING:
    from .client import LifxClient

class LifxDeviceRegistry(Sequence[LifxDevice]):
    """An in-memory, ordered collection of LifxDevice, unique by device id.

    Order is the order in which devices were first added (discovery arrival order). Adding a
    device that is already present updates the existing entry in place and keeps its position.
    A "current selection" is deliberately not tracked here; it belongs to the caller.
    """

    _devices: List[LifxDevice]
    _by_id: Dict[bytes, LifxDevice]

    def __init__(self, devices: Optional[Iterable[LifxDevice]]=None):
        self._devices = []
        self._by_id = {}
        if devices is not None:
            for device in devices:
                self.add_or_update(device)

    def add_or_update(self, device: LifxDevice) -> LifxDevice:
        """Adds a device, or refreshes the existing entry with the same id. Returns the registry's entry."""
        existing = self._by_id.get(device.device_id)
        if existing is None:
            self._devices.append(device)
            self._by_id[device.device_id] = device
            return device
        existing.update_from(device)
        return existing

    def lookup(self, index: int) -> LifxDevice:
        """Returns the device at an index. Raises DeviceOutOfRangeError if there is no such device."""
        if index < 0 or index >= len(self._devices):
            raise DeviceOutOfRangeError(f"Device index {index} out of range; {len(self._devices)} device(s) known")
        return self._devices[index]

    def get(self, device_id: bytes) -> Optional[LifxDevice]:
        return self._by_id.get(device_id)

    def find_by_label(self, label: str) -> Optional[LifxDevice]:
        """Returns the first device whose label matches, ignoring case, or None."""
        by_label: CaseInsensitiveDict[LifxDevice] = CaseInsensitiveDict()
        for device in reversed(self._devices):
            if device.label is not None:
                by_label[device.label] = device
        return by_label.get(label)

    def index_of(self, device: LifxDevice) -> int:
        for i, d in enumerate(self._devices):
            if d == device:
                return i
        raise ValueError(f"{device} is not in the registry")

    @overload
    def __getitem__(self, index: int) -> LifxDevice: ...
    @overload
    def __getitem__(self, index: slice) -> Sequence[LifxDevice]: ...
    def __getitem__(self, index: Union[int, slice]) -> Union[LifxDevice, Sequence[LifxDevice]]:
        if isinstance(index, slice):
            return list(self._devices[index])
        return self.lookup(index)

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[LifxDevice]:
        return iter(list(self._devices))

    def __contains__(self, device: object) -> bool:
        return isinstance(device, LifxDevice) and device.device_id in self._by_id

    def to_jsonable(self) -> List[JsonableDict]:
        return [device.to_jsonable() for device in self._devices]

    def __str__(self) -> str:
        return f"LifxDeviceRegistry({self._devices})"

    def __repr__(self) -> str:
        return str(self)

async def fetch_label(client: LifxClient, device: LifxDevice, timeout: Optional[float]=None) -> Optional[str]:
    """Requests a device's label and records it, along with the address the reply came from.

    Returns the label, or None if the request timed out or the reply had the wrong shape;
    those devices keep a placeholder label. Transport failures propagate.
    """
    if timeout is None:
        timeout = DEFAULT_LABEL_TIMEOUT
    try:
        reply_addr, reply = await client.request_with_address(
            device.address, GetLabel(), target=device.device_id, timeout=timeout)
    except LifxTimeoutError as e:
        logger.warning(f"Label request to {device.serial} timed out; keeping device without a label: {e}")
        return None
    except ProtocolMismatchError as e:
        logger.warning(f"Label request to {device.serial} got an unexpected reply; keeping device without a label: {e}")
        return None
    message = reply.message
    if not isinstance(message, StateLabel):
        logger.warning(f"Label request to {device.serial} got {message}; keeping device without a label")
        return None
    if reply_addr[0] != device.address[0]:
        logger.info(f"{device.serial} replied from {reply_addr[0]}, previously {device.address[0]}; updating address")
        device.address = (reply_addr[0], device.address[1])
    device.label = message.label
    return message.label

async def populate_registry(
        client: LifxClient,
        registry: Optional[LifxDeviceRegistry]=None,
        window: Optional[float]=None,
        label_timeout: Optional[float]=None,
        fetch_labels: bool=True,
        max_concurrent_labels: int=MAX_CONCURRENT_LABEL_REQUESTS,
      ) -> LifxDeviceRegistry:
    """Runs discovery, then fetches every device's label concurrently, and adds the devices
       to a registry in discovery order.

    Parameters:
        client:                 A running LifxClient.
        registry:               The registry to add devices to. A new one is created if None.
        window:                 The discovery window in seconds.
        label_timeout:          The timeout for each label request in seconds.
        fetch_labels:           If False, devices are added without labels.
        max_concurrent_labels:  The most label requests in flight at once. Must be at least 1.

    Returns the registry.
    """
    if registry is None:
        registry = LifxDeviceRegistry()
    devices = await discover_ordered(client, window=window)
    if fetch_labels and len(devices) > 0:
        limiter = asyncio.Semaphore(max(1, max_concurrent_labels))

        async def limited_fetch_label(device: LifxDevice) -> Optional[str]:
            async with limiter:
                return await fetch_label(client, device, timeout=label_timeout)

        results = await asyncio.gather(
            *(limited_fetch_label(device) for device in devices),
            return_exceptions=True
          )
        for result in results:
            if isinstance(result, BaseException):
                raise result
    for device in devices:
        registry.add_or_update(device)
    logger.info(f"Device registry populated with {len(registry)} device(s)")
    return registry
