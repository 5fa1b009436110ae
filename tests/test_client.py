#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Tests for LifxClient request/reply correlation."""

import asyncio
import time

import pytest

from lifx_control import (
    LifxClient,
    GetLabel,
    SetPower,
    StateLabel,
    Acknowledgement,
    LifxError,
    LifxTimeoutError,
    LifxIoError,
    ProtocolMismatchError,
    MessageType,
)

from lifx_simulator import SimulatedDevice


class TestRequest:
    """Tests for single requests."""

    @pytest.mark.asyncio
    async def test_query_resolves_with_state_reply(self, make_simulator, make_client):
        """A query resolves with the device's State* reply."""
        device = SimulatedDevice("d073d5000001", label="Porch")
        simulator = await make_simulator(device)
        client = await make_client(simulator)

        reply = await client.request(simulator.local_addr, GetLabel(), target=device.device_id)

        assert reply.message == StateLabel("Porch")
        assert reply.device_id == device.device_id
        assert client.num_pending == 0
        sent = device.received[-1]
        assert sent.res_required
        assert not sent.ack_required
        assert sent.source == client.source

    @pytest.mark.asyncio
    async def test_set_resolves_with_acknowledgement(self, make_simulator, make_client):
        """A set message is sent with ack_required and resolves with the Acknowledgement."""
        device = SimulatedDevice("d073d5000001")
        simulator = await make_simulator(device)
        client = await make_client(simulator)

        reply = await client.request(simulator.local_addr, SetPower(65535), target=device.device_id)

        assert isinstance(reply.message, Acknowledgement)
        assert device.received[-1].ack_required
        assert device.is_on

    @pytest.mark.asyncio
    async def test_timeout(self, make_simulator, make_client):
        """A request with no reply fails with LifxTimeoutError after its deadline."""
        device = SimulatedDevice("d073d5000001", silent=True)
        simulator = await make_simulator(device)
        client = await make_client(simulator)

        start = time.monotonic()
        with pytest.raises(LifxTimeoutError):
            await client.request(simulator.local_addr, GetLabel(), target=device.device_id, timeout=0.2)
        elapsed = time.monotonic() - start

        assert 0.15 <= elapsed < 1.0
        assert client.num_pending == 0

    @pytest.mark.asyncio
    async def test_timeout_is_a_builtin_timeout(self, make_simulator, make_client):
        """LifxTimeoutError can be caught as the builtin TimeoutError."""
        device = SimulatedDevice("d073d5000001", silent=True)
        simulator = await make_simulator(device)
        client = await make_client(simulator)

        with pytest.raises(TimeoutError):
            await client.request(simulator.local_addr, GetLabel(), target=device.device_id, timeout=0.1)

    @pytest.mark.asyncio
    async def test_wrong_reply_type_is_protocol_mismatch(self, make_simulator, make_client):
        """A reply with the request's token but the wrong message type raises ProtocolMismatchError."""
        device = SimulatedDevice("d073d5000001", mismatch_types=[MessageType.GET_LABEL])
        simulator = await make_simulator(device)
        client = await make_client(simulator)

        with pytest.raises(ProtocolMismatchError):
            await client.request(simulator.local_addr, GetLabel(), target=device.device_id)
        assert client.num_pending == 0

    @pytest.mark.asyncio
    async def test_request_after_stop_fails(self, make_simulator, make_client):
        """Sending on a stopped client raises LifxIoError."""
        simulator = await make_simulator()
        client = await make_client(simulator)
        await client.stop_and_wait()

        with pytest.raises(LifxIoError):
            await client.request(simulator.local_addr, GetLabel())

    @pytest.mark.asyncio
    async def test_stop_fails_pending_requests(self, make_simulator, make_client):
        """Stopping the client fails in-flight requests with LifxIoError rather than leaving them to time out."""
        device = SimulatedDevice("d073d5000001", silent=True)
        simulator = await make_simulator(device)
        client = await make_client(simulator)

        task = asyncio.ensure_future(
            client.request(simulator.local_addr, GetLabel(), target=device.device_id, timeout=5.0))
        await asyncio.sleep(0.05)
        await client.stop_and_wait()

        with pytest.raises(LifxIoError):
            await asyncio.wait_for(task, 1.0)


class TestCorrelation:
    """Tests for concurrent requests and token handling."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_resolve_with_their_own_replies(self, make_simulator, make_client):
        """Concurrent requests, answered out of order, each resolve with the reply carrying their own token."""
        devices = [
            SimulatedDevice(f"d073d50000{i:02x}", label=f"Light {i}", reply_delay=0.02 * (10 - i))
            for i in range(10)
        ]
        simulator = await make_simulator(*devices)
        client = await make_client(simulator, request_timeout=1.0)

        replies = await asyncio.gather(
            *(client.request(simulator.local_addr, GetLabel(), target=d.device_id) for d in devices))

        for device, reply in zip(devices, replies):
            assert reply.device_id == device.device_id
            assert reply.message == StateLabel(device.label)
            assert reply.sequence == device.received[-1].sequence
        assert len({reply.sequence for reply in replies}) == len(devices)

    @pytest.mark.asyncio
    async def test_late_reply_does_not_resolve_a_later_request(self, make_simulator, make_client):
        """After a timeout, the token is not reused while a late reply may still arrive."""
        slow = SimulatedDevice("d073d5000001", label="Slow", reply_delay=0.4)
        simulator = await make_simulator(slow)
        client = await make_client(simulator)

        with pytest.raises(LifxTimeoutError):
            await client.request(simulator.local_addr, GetLabel(), target=slow.device_id, timeout=0.2)
        timed_out_token = slow.received[-1].sequence

        later_tokens = {client.allocate_token() for _ in range(255)}
        assert timed_out_token not in later_tokens

        # the first request's late reply arrives while this one is pending, and is discarded
        reply = await client.request(simulator.local_addr, GetLabel(), target=slow.device_id, timeout=1.0)
        assert reply.sequence == slow.received[-1].sequence
        assert reply.sequence != timed_out_token
        assert client.num_pending == 0

    @pytest.mark.asyncio
    async def test_quarantine_expires(self, make_simulator, make_client):
        """A timed-out token becomes available again after one timeout period."""
        device = SimulatedDevice("d073d5000001", silent=True)
        simulator = await make_simulator(device)
        client = await make_client(simulator)

        with pytest.raises(LifxTimeoutError):
            await client.request(simulator.local_addr, GetLabel(), target=device.device_id, timeout=0.1)
        timed_out_token = device.received[-1].sequence
        await asyncio.sleep(0.15)

        later_tokens = {client.allocate_token() for _ in range(256)}
        assert timed_out_token in later_tokens

    @pytest.mark.asyncio
    async def test_reply_from_another_client_is_ignored(self, make_simulator, make_client):
        """Replies carrying another client's source id never resolve this client's requests."""
        device = SimulatedDevice("d073d5000001", label="Shared", reply_delay=0.05)
        simulator = await make_simulator(device)
        client_a = await make_client(simulator)
        client_b = await make_client(simulator)

        reply_a, reply_b = await asyncio.gather(
            client_a.request(simulator.local_addr, GetLabel(), target=device.device_id),
            client_b.request(simulator.local_addr, GetLabel(), target=device.device_id),
        )

        assert reply_a.source == client_a.source
        assert reply_b.source == client_b.source

    @pytest.mark.asyncio
    async def test_reserved_token_is_never_allocated(self):
        """Reserved tokens are skipped until released."""
        client = LifxClient(bind_address="127.0.0.1", broadcast_addresses=[("127.0.0.1", 1)])
        reserved = client.reserve_token()

        allocated = {client.allocate_token() for _ in range(255)}
        assert reserved not in allocated

        client.release_token(reserved)
        allocated = {client.allocate_token() for _ in range(256)}
        assert reserved in allocated

    @pytest.mark.asyncio
    async def test_transport_error_does_not_fail_other_requests(self, make_simulator, make_client):
        """An ICMP error caused by one unreachable device leaves requests to healthy devices pending."""
        healthy = SimulatedDevice("d073d5000001", label="Healthy", reply_delay=0.2)
        simulator = await make_simulator(healthy)
        client = await make_client(simulator, request_timeout=1.0)

        task = asyncio.ensure_future(client.request(simulator.local_addr, GetLabel(), target=healthy.device_id))
        await asyncio.sleep(0.05)
        client.error_received(ConnectionRefusedError("port unreachable"))
        reply = await task

        assert reply.message == StateLabel("Healthy")
        assert client.is_open


class TestTokenExhaustion:
    """Tests for requests made while every correlation token is in use."""

    @pytest.mark.asyncio
    async def test_request_waits_for_a_free_token(self, make_simulator, make_client):
        """With only a few tokens free, further requests wait for one instead of failing."""
        devices = [SimulatedDevice(f"d073d50000{i:02x}", label=f"Light {i}", reply_delay=0.05) for i in range(10)]
        simulator = await make_simulator(*devices)
        client = await make_client(simulator, request_timeout=2.0)
        reserved = {client.reserve_token() for _ in range(250)}

        replies = await asyncio.gather(
            *(client.request(simulator.local_addr, GetLabel(), target=d.device_id) for d in devices))

        for device, reply in zip(devices, replies):
            assert reply.message == StateLabel(device.label)
            assert reply.sequence not in reserved

    @pytest.mark.asyncio
    async def test_released_reservation_wakes_waiting_request(self, make_simulator, make_client):
        """A request waiting for a token proceeds as soon as a reservation is released."""
        device = SimulatedDevice("d073d5000001", label="Lamp")
        simulator = await make_simulator(device)
        client = await make_client(simulator, request_timeout=2.0)
        reserved = [client.reserve_token() for _ in range(256)]

        task = asyncio.ensure_future(client.request(simulator.local_addr, GetLabel(), target=device.device_id))
        await asyncio.sleep(0.05)
        assert not task.done()
        assert device.received == []
        client.release_token(reserved[0])
        reply = await asyncio.wait_for(task, 1.0)

        assert reply.message == StateLabel("Lamp")
        assert reply.sequence == reserved[0]

    @pytest.mark.asyncio
    async def test_no_free_token_times_out(self, make_simulator, make_client):
        """If no token is freed within the timeout, the request fails with LifxTimeoutError and is never sent."""
        device = SimulatedDevice("d073d5000001")
        simulator = await make_simulator(device)
        client = await make_client(simulator)
        for _ in range(256):
            client.reserve_token()

        with pytest.raises(LifxTimeoutError):
            await client.request(simulator.local_addr, GetLabel(), target=device.device_id, timeout=0.1)
        assert device.received == []
        with pytest.raises(LifxError):
            client.allocate_token()
