#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Shared fixtures: loopback device simulators and clients bound to them."""

import pytest
import pytest_asyncio

from lifx_control import LifxClient, ExecutionBridge

from lifx_simulator import LifxDeviceSimulator, SimulatedDevice

@pytest_asyncio.fixture
async def make_simulator():
    """Factory for started LifxDeviceSimulator instances on the test's event loop."""
    simulators = []

    async def _make(*devices: SimulatedDevice) -> LifxDeviceSimulator:
        simulator = LifxDeviceSimulator(devices)
        await simulator.start()
        simulators.append(simulator)
        return simulator

    yield _make
    for simulator in simulators:
        await simulator.stop_and_wait()

@pytest_asyncio.fixture
async def make_client():
    """Factory for started LifxClient instances that broadcast only to a simulator."""
    clients = []

    async def _make(simulator: LifxDeviceSimulator, request_timeout: float=0.3) -> LifxClient:
        client = LifxClient(
            bind_address="127.0.0.1",
            broadcast_addresses=[simulator.local_addr],
            request_timeout=request_timeout,
          )
        await client.start()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.stop_and_wait()

@pytest.fixture
def threaded_simulator():
    """Factory for simulators running on their own ExecutionBridge, for synchronous tests."""
    bridge = ExecutionBridge(name="lifx-simulator")
    bridge.start()
    simulators = []

    def _make(*devices: SimulatedDevice) -> LifxDeviceSimulator:
        async def _start() -> LifxDeviceSimulator:
            simulator = LifxDeviceSimulator(devices)
            await simulator.start()
            return simulator
        simulator = bridge.run_blocking(_start())
        simulators.append(simulator)
        return simulator

    yield _make
    try:
        for simulator in simulators:
            bridge.run_blocking(simulator.stop_and_wait())
    finally:
        bridge.stop()
