#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Tests for the lifx-control command line."""

import io
import json

import pytest

from lifx_control import __version__, HsbkColor, LifxDevice, LifxDeviceRegistry
from lifx_control.__main__ import arun, run, ControlSession

from lifx_simulator import SimulatedDevice


def _write_config(tmp_path, simulator) -> str:
    config_file = tmp_path / "lifx.json"
    host, port = simulator.local_addr
    config_file.write_text(json.dumps({
        "bind_address": "127.0.0.1",
        "broadcast_addresses": [f"{host}:{port}"],
        "discovery_window": 0.2,
        "request_timeout": 0.3,
        "label_timeout": 0.3,
    }))
    return str(config_file)


class TestCommands:
    """Tests for the CLI subcommands."""

    def test_version(self, capsys):
        """version prints the package version."""
        assert run(["version"]) == 0
        assert capsys.readouterr().out.strip() == __version__

    def test_no_command(self, capsys):
        """A command is required."""
        assert run([]) == 1
        assert "A command is required" in capsys.readouterr().err

    def test_bad_argument(self, capsys):
        """Argument errors return argparse's exit code."""
        assert run(["discover", "--window", "soon"]) == 2

    def test_missing_config_file(self, tmp_path, capsys):
        """Errors are reported on one line and return 1."""
        assert run(["--config", str(tmp_path / "missing.json"), "version"]) == 0
        assert run(["--config", str(tmp_path / "missing.json"), "discover"]) == 1
        assert "lifx-control: error:" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_discover(self, make_simulator, tmp_path, capsys):
        """discover prints the devices as JSON."""
        simulator = await make_simulator(SimulatedDevice("d073d5000001", label="Desk"))
        config_file = _write_config(tmp_path, simulator)

        rc = await arun(["--config", config_file, "discover"])

        assert rc == 0
        devices = json.loads(capsys.readouterr().out)
        assert devices == [{
            "serial": "d0:73:d5:00:00:01",
            "address": f"{simulator.local_addr[0]}:{simulator.local_addr[1]}",
            "label": "Desk",
        }]

    def test_set_by_label(self, threaded_simulator, tmp_path, capsys):
        """set applies power and color to the device with the given label."""
        desk = SimulatedDevice("d073d5000001", label="Desk", discovery_delays=[0.0])
        hall = SimulatedDevice("d073d5000002", label="Hall", discovery_delays=[0.05])
        simulator = threaded_simulator(desk, hall)
        config_file = _write_config(tmp_path, simulator)

        rc = run(["--config", config_file, "set", "--label", "hall", "--hue", "120", "--saturation", "1"])

        assert rc == 0
        assert hall.is_on
        assert hall.color == HsbkColor.from_degrees(120.0, 1.0, 1.0)
        assert not desk.is_on
        assert "Hall" in capsys.readouterr().out

    def test_set_unknown_label(self, threaded_simulator, tmp_path, capsys):
        """set with an unknown label fails."""
        simulator = threaded_simulator(SimulatedDevice("d073d5000001", label="Desk"))
        config_file = _write_config(tmp_path, simulator)

        assert run(["--config", config_file, "set", "--label", "Garage"]) == 1
        assert "Garage" in capsys.readouterr().err


class FakeController:
    def __init__(self, devices):
        self.devices = LifxDeviceRegistry(devices)
        self.selected_index = 0
        self.applied = []

    def select(self, index):
        device = self.devices.lookup(index)
        self.selected_index = index
        return device

    def apply(self, power_on, color):
        self.applied.append((self.selected_index, power_on, color))


class TestControlSession:
    """Tests for the interactive control surface."""

    def _session(self):
        devices = [
            LifxDevice(bytes.fromhex("d073d5000001"), ("10.0.0.1", 56700), label="Desk"),
            LifxDevice(bytes.fromhex("d073d5000002"), ("10.0.0.2", 56700), label="Hall"),
        ]
        controller = FakeController(devices)
        return ControlSession(controller), controller  # type: ignore[arg-type]

    def test_each_change_submits_a_command(self, capsys):
        """Every power or color change submits one command with the current working values."""
        session, controller = self._session()

        session.run(io.StringIO("select 1\nhue 120\nbrightness 0.5\noff\nquit\n"))

        assert [(i, on) for i, on, _ in controller.applied] == [(1, True), (1, True), (1, False)]
        assert controller.applied[-1][2] == HsbkColor.from_degrees(120.0, 0.0, 0.5)
        out = capsys.readouterr().out
        assert "Selected Hall" in out

    def test_errors_do_not_end_session(self, capsys):
        """Bad input is reported and the session continues."""
        session, controller = self._session()

        session.run(io.StringIO("select 5\nhue 400\nfrobnicate\non\n"))

        assert len(controller.applied) == 1
        err = capsys.readouterr().err
        assert "out of range" in err
        assert "Unknown command" in err
