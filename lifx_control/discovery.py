#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
LIFX device discovery.

A single tagged GetService probe is broadcast, and every StateService reply that carries
the probe's correlation token is collected for a fixed window. Devices often answer more
than once (once per service, and sometimes repeatedly); replies are deduplicated by device id.
"""

from __future__ import annotations


import time

from .internal_types import *
from .pkg_logging import logger
from .constants import DEFAULT_DISCOVERY_WINDOW, SERVICE_UDP
from .lifx_message import GetService, StateService
from .lifx_socket import LifxPacketSubscriber
from .device import LifxDevice

if TYPE_CHECKING:
    from .client import LifxClient

class LifxDiscoveryRequest(
        AsyncContextManager['LifxDiscoveryRequest'],
        AsyncIterable[LifxDevice]
      ):
    """An object that manages a single discovery probe on a LifxClient and all of the received replies
       within an AsyncContextManager/AsyncIterable interface."""

    client: LifxClient
    window: float
    max_devices: int
    token: int = -1
    end_time: float = 0.0
    devices: Dict[bytes, LifxDevice]
    """The devices seen so far, keyed by device id, in arrival order."""

    packet_subscriber: LifxPacketSubscriber

    def __init__(self, client: LifxClient, window: Optional[float]=None, max_devices: int=0):
        """Create an async context manager/iterable that broadcasts a discovery probe and yields each
        distinct device as its first reply arrives.

        Parameters:
            client:       The LifxClient to use for sending the probe and receiving replies.
            window:       The amount of time (in seconds) to collect replies. Defaults to DEFAULT_DISCOVERY_WINDOW.
            max_devices:  If nonzero, iteration ends early once this many distinct devices have been seen.

        Usage:
            async with LifxDiscoveryRequest(client, window=2.0) as discovery:
                async for device in discovery:
                    print(device)
        """
        self.client = client
        self.window = DEFAULT_DISCOVERY_WINDOW if window is None else window
        self.max_devices = max_devices
        self.devices = {}
        self.packet_subscriber = LifxPacketSubscriber(client)

    async def __aenter__(self) -> LifxDiscoveryRequest:
        # Subscribe before sending the probe so that no reply is missed.
        await self.packet_subscriber.__aenter__()
        try:
            self.token = self.client.reserve_token()
            for addr in self.client.broadcast_addresses:
                probe = self.client.make_packet(GetService(), sequence=self.token, res_required=True)
                self.client.sendto(probe, addr)
            self.end_time = time.monotonic() + self.window
            logger.debug(f"Sent discovery probe with token {self.token} to {self.client.broadcast_addresses}")
        except BaseException as e:
            # __aexit__ will not be called if __aenter__ raises
            await self._cleanup(type(e), e, e.__traceback__)
            raise
        return self

    async def _cleanup(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        if self.token >= 0:
            self.client.release_token(self.token)
        return await self.packet_subscriber.__aexit__(exc_type, exc, tb)

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        return await self._cleanup(exc_type, exc, tb)

    def _device_from_reply(self, addr: HostAndPort, message: StateService, device_id: bytes) -> Optional[LifxDevice]:
        if message.service != SERVICE_UDP or message.port == 0:
            return None
        return LifxDevice(device_id, (addr[0], message.port))

    async def iter_devices(self) -> AsyncIterator[LifxDevice]:
        """Yields each distinct device once, as its first reply arrives, until the window elapses."""
        n = 0
        while True:
            if self.max_devices > 0 and n >= self.max_devices:
                break
            remaining_time = self.end_time - time.monotonic()
            if remaining_time <= 0.0:
                break
            received = await self.packet_subscriber.receive(remaining_time)
            if received is None:
                break
            addr, packet = received
            if packet.source != self.client.source or packet.sequence != self.token:
                logger.debug(f"Discovery ignoring unrelated packet from {addr}: {packet}")
                continue
            message = packet.message
            if not isinstance(message, StateService):
                logger.debug(f"Discovery ignoring non-StateService reply from {addr}: {packet}")
                continue
            device = self._device_from_reply(addr, message, packet.device_id)
            if device is None:
                continue
            existing = self.devices.get(device.device_id)
            if existing is not None:
                existing.update_from(device)
                continue
            self.devices[device.device_id] = device
            logger.debug(f"Discovered {device}")
            n += 1
            yield device

    def __aiter__(self) -> AsyncIterator[LifxDevice]:
        return self.iter_devices()

async def discover(client: LifxClient, window: Optional[float]=None) -> Set[LifxDevice]:
    """Broadcasts a discovery probe and returns the set of distinct devices that replied within
       the window. Zero replies yields an empty set."""
    async with LifxDiscoveryRequest(client, window=window) as discovery:
        async for _ in discovery:
            pass
        result = set(discovery.devices.values())
    logger.info(f"Discovery found {len(result)} device(s)")
    return result

async def discover_ordered(client: LifxClient, window: Optional[float]=None) -> List[LifxDevice]:
    """Like discover(), but returns the devices in order of first reply."""
    async with LifxDiscoveryRequest(client, window=window) as discovery:
        async for _ in discovery:
            pass
        result = list(discovery.devices.values())
    logger.info(f"Discovery found {len(result)} device(s)")
    return result
