#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
LifxSocket -- the UDP transport shared by the client and the test simulator.

A LifxSocket owns exactly one bound, broadcast-capable datagram socket, and is itself the
asyncio DatagramProtocol for it. Received datagrams are decoded into LifxPackets and handed to
dispatch_packet(); by default every unclaimed packet is copied to each LifxPacketSubscriber.

Subclasses must implement create_socket() to create and bind the low-level socket.
"""

from __future__ import annotations


import asyncio
from asyncio import Future
import socket
from abc import abstractmethod

from .internal_types import *
from .pkg_logging import logger
from .exceptions import LifxError, LifxIoError, LifxCodecError
from .lifx_message import LifxPacket, encode_packet, decode_packet
from .util import format_host_and_port

MAX_QUEUE_SIZE = 1000

ReceivedPacket = Tuple[HostAndPort, LifxPacket]
"""A (source_address, packet) pair delivered to subscribers"""

class LifxPacketSubscriber(
        AsyncContextManager['LifxPacketSubscriber'],
        AsyncIterable[ReceivedPacket]
      ):
    """A queue of the packets a LifxSocket received but did not claim, such as the many
       replies to a broadcast probe.

    A receive() that times out leaves the subscriber usable; only the end of the socket's
    stream ends the subscription.
    """

    lifx_socket: LifxSocket
    queue: asyncio.Queue[Optional[ReceivedPacket]]
    ended: bool = False
    end_exc: Optional[BaseException] = None

    def __init__(self, lifx_socket: LifxSocket, max_queue_size: int=MAX_QUEUE_SIZE):
        self.lifx_socket = lifx_socket
        self.queue = asyncio.Queue(max_queue_size)

    async def __aenter__(self) -> LifxPacketSubscriber:
        self.lifx_socket.add_subscriber(self)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.lifx_socket.remove_subscriber(self)
        return False

    def on_packet(self, addr: HostAndPort, packet: LifxPacket) -> None:
        if self.ended:
            return
        try:
            self.queue.put_nowait((addr, packet))
        except asyncio.QueueFull:
            logger.warning(f"Subscriber queue full, dropping packet from {addr}: {packet}")

    def on_end_of_stream(self, exc: Optional[BaseException]=None) -> None:
        if self.ended:
            return
        self.ended = True
        self.end_exc = exc
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            # receive() notices the end once the queue drains
            pass

    def _end_of_stream(self) -> None:
        if self.end_exc is not None:
            raise LifxIoError(f"{self.lifx_socket} failed: {self.end_exc}") from self.end_exc

    async def receive(self, timeout: Optional[float]=None) -> Optional[ReceivedPacket]:
        """Returns the next unclaimed (address, packet).

        Returns None if timeout (in seconds) elapses first, or if the socket has closed and
        every queued packet has been received. Raises LifxIoError if the socket failed.
        """
        if self.ended and self.queue.empty():
            self._end_of_stream()
            return None
        try:
            item = await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is None:
            self._end_of_stream()
        return item

    async def iter_packets(self) -> AsyncIterator[ReceivedPacket]:
        while True:
            item = await self.receive()
            if item is None:
                break
            yield item

    def __aiter__(self) -> AsyncIterator[ReceivedPacket]:
        return self.iter_packets()

class LifxSocket(asyncio.DatagramProtocol, AsyncContextManager['LifxSocket']):
    """
    An async LIFX LAN socket over a single UDP socket.

    Usage:
        async with SomeLifxSocket() as lifx_socket:
            lifx_socket.sendto(packet, addr)
    """

    sockname: Optional[str]
    """The name of the socket as shown in logs. Defaults to the bound address."""

    local_addr: HostAndPort
    """The local (host, port) the socket is bound to. Valid once started."""

    final_result: Future[None]
    """Completed once the socket has been stopped and its transport has closed."""

    final_exc: Optional[BaseException] = None
    """The error that closed the transport, if it did not close cleanly."""

    packet_subscribers: Set[LifxPacketSubscriber]

    _transport: Optional[asyncio.DatagramTransport] = None
    _started: bool = False

    def __init__(self, sockname: Optional[str]=None):
        self.sockname = sockname
        self.local_addr = ('0.0.0.0', 0)
        self.final_result = asyncio.get_running_loop().create_future()
        self.packet_subscribers = set()

    @abstractmethod
    def create_socket(self) -> socket.socket:
        """Creates, configures and binds the non-blocking datagram socket to use.
           Raises OSError if the socket cannot be bound."""
        raise NotImplementedError()

    def add_subscriber(self, subscriber: LifxPacketSubscriber) -> None:
        if self.final_result.done():
            subscriber.on_end_of_stream(self.final_exc)
        self.packet_subscribers.add(subscriber)

    def remove_subscriber(self, subscriber: LifxPacketSubscriber) -> None:
        self.packet_subscribers.discard(subscriber)

    async def start(self) -> None:
        if self._started or self.final_result.done():
            raise LifxError(f"{self} has already been started or stopped")
        self._started = True
        loop = asyncio.get_running_loop()
        try:
            sock = self.create_socket()
        except BaseException as e:
            self._set_final(e)
            if isinstance(e, OSError):
                raise LifxIoError(f"Unable to create UDP socket for {self}: {e}") from e
            raise
        try:
            await loop.create_datagram_endpoint(lambda: self, sock=sock)
        except BaseException as e:
            sock.close()
            self._set_final(e)
            if isinstance(e, OSError):
                raise LifxIoError(f"Unable to open UDP endpoint for {self}: {e}") from e
            raise
        logger.debug(f"{self} started")

    async def stop(self) -> None:
        """Closes the transport. Completion is reported through final_result."""
        transport = self._transport
        if transport is None:
            self._set_final(None)
        elif not transport.is_closing():
            transport.close()

    async def wait_for_done(self) -> None:
        await asyncio.shield(self.final_result)

    async def stop_and_wait(self) -> None:
        await self.stop()
        await self.wait_for_done()

    @property
    def is_open(self) -> bool:
        transport = self._transport
        return transport is not None and not transport.is_closing()

    def sendto(self, packet: LifxPacket, addr: HostAndPort) -> None:
        """Encodes and sends a packet. Raises LifxIoError if the socket is not open or the send fails."""
        data = encode_packet(packet)
        transport = self._transport
        if transport is None or transport.is_closing():
            raise LifxIoError(f"Cannot send to {format_host_and_port(addr)}: {self} is not open")
        logger.debug(f"{self} sending to {format_host_and_port(addr)}: {packet}")
        try:
            transport.sendto(data, addr)
        except OSError as e:
            raise LifxIoError(f"Send to {format_host_and_port(addr)} via {self} failed: {e}") from e

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        # asyncio datagram transports do not inherit from asyncio.DatagramTransport
        self._transport = transport # type: ignore[assignment]
        sockname = transport.get_extra_info('sockname')
        self.local_addr = (sockname[0], sockname[1])
        if self.sockname is None:
            self.sockname = format_host_and_port(self.local_addr)

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        """Decodes a datagram and dispatches it. Undecodable datagrams are dropped."""
        src = (addr[0], addr[1])
        try:
            packet = decode_packet(data)
        except LifxCodecError as e:
            logger.debug(f"Dropping undecodable datagram from {src}, raw=[{data!r}]: {e}")
            return
        logger.debug(f"{self} received from {format_host_and_port(src)}: {packet}")
        try:
            self.dispatch_packet(src, packet)
        except Exception as e:
            logger.error(f"{self} failed to handle packet from {format_host_and_port(src)}: {packet}: {e!r}")

    def dispatch_packet(self, addr: HostAndPort, packet: LifxPacket) -> None:
        """Delivers a received packet. The default copies it to every subscriber. Subclasses
           may claim a packet first and only call this for packets they do not claim."""
        if len(self.packet_subscribers) == 0:
            logger.debug(f"Discarding unclaimed packet from {addr}: {packet}")
            return
        for subscriber in list(self.packet_subscribers):
            subscriber.on_packet(addr, packet)

    def error_received(self, exc: Exception) -> None:
        """Called for an OSError reported by the transport, such as an ICMP port unreachable.

        The OS does not say which send caused it, so it is logged and the socket stays open.
        """
        logger.info(f"{self} transport error: {exc}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        logger.debug(f"{self} transport closed, exc={exc!r}")
        self._transport = None
        self._set_final(exc)

    def on_final(self, exc: Optional[BaseException]) -> None:
        """Called once when the socket stops. Subclasses can override to fail in-flight work."""
        pass

    def _set_final(self, exc: Optional[BaseException]) -> None:
        if self.final_result.done():
            return
        self.final_exc = exc
        for subscriber in list(self.packet_subscribers):
            subscriber.on_end_of_stream(exc)
        self.on_final(exc)
        self.final_result.set_result(None)

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.sockname})"

    def __repr__(self) -> str:
        return str(self)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.stop_and_wait()
        return False
