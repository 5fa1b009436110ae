#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
LifxClient -- A LIFX LAN client that can:

  1. Send a request packet to a device and await the single reply that carries the same
     correlation token (the LIFX sequence number), or fail with a timeout
  2. Track up to 256 concurrent outstanding requests, each with its own deadline; further
     requests wait for a token to be freed
  3. Send broadcast probes and hand unclaimed replies to packet subscribers (see discovery.py)
"""

from __future__ import annotations


import asyncio
from asyncio import Future
import random
import socket
import time

from .internal_types import *
from .pkg_logging import logger
from .constants import (
    LIFX_PORT,
    LIFX_BROADCAST_ADDRESS,
    MAX_SEQUENCE,
    DEFAULT_REQUEST_TIMEOUT,
  )
from .exceptions import LifxError, LifxIoError, LifxTimeoutError, ProtocolMismatchError
from .lifx_message import LifxMessage, LifxPacket, MessageType, device_id_to_serial
from .lifx_socket import LifxSocket
from .util import format_host_and_port

ExpectedReply = Union[int, Iterable[int]]
"""One message type, or a collection of message types, that is an acceptable reply to a request."""

def generate_source_id() -> int:
    """Generate a random client source identifier (0 and 1 are reserved by devices)."""
    return random.randint(2, 0xFFFFFFFF)

class _PendingRequest:
    """An outstanding request awaiting its reply."""

    token: int
    address: HostAndPort
    packet: LifxPacket
    expect: FrozenSet[int]
    created_time: float
    deadline: float
    future: Future[Tuple[HostAndPort, LifxPacket]]

    def __init__(self, token: int, address: HostAndPort, packet: LifxPacket, expect: FrozenSet[int], timeout: float):
        self.token = token
        self.address = address
        self.packet = packet
        self.expect = expect
        self.created_time = time.monotonic()
        self.deadline = self.created_time + timeout
        self.future = asyncio.get_running_loop().create_future()

    def matches(self, addr: HostAndPort, packet: LifxPacket) -> bool:
        """True if a packet that carries this request's token is a reply to this request.

        The reply must come from the host the request was sent to, unless the request was
        addressed to a specific device id, in which case a reply from that device at another
        host is also accepted.
        """
        if addr[0] == self.address[0]:
            return True
        return not self.packet.tagged and packet.device_id == self.packet.device_id

    def __str__(self) -> str:
        return f"_PendingRequest(token={self.token}, address={self.address}, message={self.packet.message})"

class LifxClient(LifxSocket, AsyncContextManager['LifxClient']):
    """
    A LIFX LAN client that correlates requests with replies over a single UDP socket.

    Must be created and used on a single asyncio event loop; the pending-request table and
    the socket are never touched from any other thread.
    """

    bind_address: str
    """The local IP address to bind to. By default, all interfaces ("0.0.0.0")."""

    bind_port: int
    """The local port to bind to. By default (0), an ephemeral port is chosen."""

    port: int
    """The port devices listen on; used for broadcast probes."""

    broadcast_addresses: List[HostAndPort]
    """The addresses to send discovery probes to."""

    request_timeout: float
    """The default per-request timeout, in seconds."""

    source: int
    """The random client id stamped in every packet sent by this client."""

    _pending: Dict[int, _PendingRequest]
    _reserved_tokens: Set[int]
    _quarantined_tokens: Dict[int, float]
    _next_sequence: int
    _token_freed: asyncio.Event

    def __init__(
            self,
            bind_address: str="0.0.0.0",
            bind_port: int=0,
            port: int=LIFX_PORT,
            broadcast_addresses: Optional[Iterable[HostAndPort]]=None,
            request_timeout: float=DEFAULT_REQUEST_TIMEOUT,
            source: Optional[int]=None,
          ) -> None:
        super().__init__()
        self.bind_address = bind_address
        self.bind_port = bind_port
        self.port = port
        if broadcast_addresses is None:
            broadcast_addresses = [(LIFX_BROADCAST_ADDRESS, port)]
        self.broadcast_addresses = list(broadcast_addresses)
        self.request_timeout = request_timeout
        self.source = generate_source_id() if source is None else source
        self._pending = {}
        self._reserved_tokens = set()
        self._quarantined_tokens = {}
        self._next_sequence = random.randrange(MAX_SEQUENCE)
        self._token_freed = asyncio.Event()

    #@override
    def create_socket(self) -> socket.socket:
        """Creates and binds a single broadcast-enabled UDP socket."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((self.bind_address, self.bind_port))
            sock.setblocking(False)
        except OSError as e:
            sock.close()
            raise LifxIoError(f"Unable to bind UDP socket to {self.bind_address}:{self.bind_port}: {e}") from e
        return sock

    @property
    def num_pending(self) -> int:
        return len(self._pending)

    def _token_in_use(self, token: int, now: float) -> bool:
        if token in self._pending or token in self._reserved_tokens:
            return True
        release_time = self._quarantined_tokens.get(token)
        if release_time is None:
            return False
        if release_time <= now:
            del self._quarantined_tokens[token]
            return False
        return True

    def _next_free_token(self) -> Optional[int]:
        now = time.monotonic()
        for _ in range(MAX_SEQUENCE):
            token = self._next_sequence
            self._next_sequence = (token + 1) % MAX_SEQUENCE
            if not self._token_in_use(token, now):
                return token
        return None

    def allocate_token(self) -> int:
        """Returns the next free correlation token, advancing a wrapping counter.

        Tokens that are pending, reserved, or quarantined after a timeout are skipped.
        Raises LifxError if every token is in use; request() waits instead (see acquire_token()).
        """
        token = self._next_free_token()
        if token is None:
            raise LifxError(f"All {MAX_SEQUENCE} correlation tokens are in use")
        return token

    async def acquire_token(self, timeout: float) -> int:
        """Like allocate_token(), but when every token is in use, waits up to timeout seconds
           for a request to complete, a reservation to be released or a quarantine to expire.

        Raises LifxTimeoutError if no token is freed in time.
        """
        deadline = time.monotonic() + timeout
        while True:
            token = self._next_free_token()
            if token is not None:
                return token
            now = time.monotonic()
            if now >= deadline:
                raise LifxTimeoutError(
                    f"No free correlation token within {timeout} seconds ({len(self._pending)} requests pending)")
            wait_time = deadline - now
            if len(self._quarantined_tokens) > 0:
                wait_time = min(wait_time, max(min(self._quarantined_tokens.values()) - now, 0.0))
            self._token_freed.clear()
            try:
                await asyncio.wait_for(self._token_freed.wait(), wait_time)
            except asyncio.TimeoutError:
                pass

    def reserve_token(self) -> int:
        """Allocates a token that is held until release_token() is called. Used for broadcast
           probes that expect many replies."""
        token = self.allocate_token()
        self._reserved_tokens.add(token)
        return token

    def release_token(self, token: int) -> None:
        self._reserved_tokens.discard(token)
        self._token_freed.set()

    def make_packet(
            self,
            message: LifxMessage,
            target: Optional[bytes]=None,
            sequence: int=0,
            ack_required: bool=False,
            res_required: bool=False,
          ) -> LifxPacket:
        return LifxPacket(
            message,
            source=self.source,
            target=target,
            sequence=sequence,
            ack_required=ack_required,
            res_required=res_required,
          )

    def send(self, address: HostAndPort, message: LifxMessage, target: Optional[bytes]=None) -> None:
        """Sends a message without requesting or waiting for any reply."""
        packet = self.make_packet(message, target=target, sequence=self.allocate_token())
        self.sendto(packet, address)

    async def request_with_address(
            self,
            address: HostAndPort,
            message: LifxMessage,
            target: Optional[bytes]=None,
            timeout: Optional[float]=None,
            expect: Optional[ExpectedReply]=None,
          ) -> Tuple[HostAndPort, LifxPacket]:
        """Sends a request and waits for its reply. Returns (reply_source_address, reply_packet).

        Parameters:
            address:  The (host, port) to send the request to.
            message:  The message to send.
            target:   The device id to address, or None to address any device at the address.
            timeout:  Seconds to wait for the reply. Defaults to self.request_timeout.
            expect:   The message type(s) accepted as a reply. Defaults to message.reply_type for
                      query messages (sent with res_required), or Acknowledgement for all others
                      (sent with ack_required).

        Raises:
            LifxTimeoutError:      No matching reply arrived before the deadline, or all 256 tokens stayed in use
                                   for the whole timeout.
            ProtocolMismatchError: A reply with this request's token arrived, but with an unexpected message type.
            LifxIoError:           The socket failed or was closed.
        """
        if timeout is None:
            timeout = self.request_timeout
        if expect is None:
            expect = MessageType.ACKNOWLEDGEMENT if message.reply_type is None else message.reply_type
        expect_types: FrozenSet[int] = frozenset([expect]) if isinstance(expect, int) else frozenset(expect)
        ack_required = MessageType.ACKNOWLEDGEMENT in expect_types
        res_required = len(expect_types - {MessageType.ACKNOWLEDGEMENT}) > 0

        token = await self.acquire_token(timeout)
        packet = self.make_packet(
            message,
            target=target,
            sequence=token,
            ack_required=ack_required,
            res_required=res_required
          )
        pending = _PendingRequest(token, address, packet, expect_types, timeout)
        self._pending[token] = pending
        try:
            self.sendto(packet, address)
            try:
                reply_addr, reply = await asyncio.wait_for(pending.future, timeout)
            except asyncio.TimeoutError:
                # A late reply must not resolve a later request that reuses this token
                self._quarantined_tokens[token] = time.monotonic() + timeout
                logger.debug(f"Request timed out after {timeout}s: {pending}")
                raise LifxTimeoutError(
                    f"No reply from {format_host_and_port(address)} to {message} within {timeout} seconds") from None
        finally:
            if self._pending.get(token) is pending:
                del self._pending[token]
            self._token_freed.set()

        if reply.message_type not in expect_types:
            raise ProtocolMismatchError(
                f"Unexpected reply to {message} from {format_host_and_port(reply_addr)}: "
                f"got {reply.message}, expected message type(s) {sorted(expect_types)}")
        return reply_addr, reply

    async def request(
            self,
            address: HostAndPort,
            message: LifxMessage,
            target: Optional[bytes]=None,
            timeout: Optional[float]=None,
            expect: Optional[ExpectedReply]=None,
          ) -> LifxPacket:
        """Sends a request and waits for its reply packet. See request_with_address()."""
        _, reply = await self.request_with_address(address, message, target=target, timeout=timeout, expect=expect)
        return reply

    #@override
    def dispatch_packet(self, addr: HostAndPort, packet: LifxPacket) -> None:
        if packet.source == self.source:
            pending = self._pending.get(packet.sequence)
            if pending is not None and pending.matches(addr, packet):
                del self._pending[packet.sequence]
                if not pending.future.done():
                    pending.future.set_result((addr, packet))
                logger.debug(f"Resolved {pending} with reply from {device_id_to_serial(packet.device_id)} at {addr}")
                return
        super().dispatch_packet(addr, packet)

    def _fail_all_pending(self, exc: Exception) -> None:
        pendings = list(self._pending.values())
        self._pending.clear()
        for pending in pendings:
            if not pending.future.done():
                pending.future.set_exception(exc)

    #@override
    def on_final(self, exc: Optional[BaseException]) -> None:
        self._fail_all_pending(LifxIoError("LifxClient socket closed" if exc is None else f"LifxClient socket failed: {exc}"))

    async def __aenter__(self) -> LifxClient:
        await super().__aenter__()
        return self
