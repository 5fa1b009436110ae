#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import asyncio
import logging

from lifx_control.internal_types import *
from lifx_control.util import format_host_and_port

from lifx_control import (
    __version__ as pkg_version,
    LifxClient,
    LifxController,
    LifxControlConfig,
    LifxDevice,
    ConfigContext,
    HsbkColor,
    LifxError,
    populate_registry,
  )

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

CONTROL_HELP = """Commands:
  list                 List devices; the selected device is marked with '*'
  select <index>       Select a device
  on | off             Set the selected device's power
  hue <degrees>        Set hue, 0..360
  saturation <0..1>    Set saturation
  brightness <0..1>    Set brightness
  kelvin <k>           Set color temperature
  show                 Show the current working values
  help                 Show this help
  quit                 Exit
Every change is sent to the selected device immediately, without waiting for it to complete."""

class ControlSession:
    """The interactive control surface: holds the working power/color values and the selection,
       and submits a command for each change without waiting for it."""

    controller: LifxController
    power_on: bool = True
    hue: float = 0.0
    saturation: float = 0.0
    brightness: float = 1.0
    kelvin: int = 3500

    def __init__(self, controller: LifxController):
        self.controller = controller

    @property
    def color(self) -> HsbkColor:
        return HsbkColor.from_degrees(self.hue, self.saturation, self.brightness, self.kelvin)

    def list_devices(self) -> None:
        for i, device in enumerate(self.controller.devices):
            marker = '*' if i == self.controller.selected_index else ' '
            print(f"{marker} {i}: {device.display_name} ({device.serial} @ {format_host_and_port(device.address)})")

    def show(self) -> None:
        print(f"power={'on' if self.power_on else 'off'} hue={self.hue} saturation={self.saturation} "
              f"brightness={self.brightness} kelvin={self.kelvin}")

    def submit(self) -> None:
        job = self.controller.apply(self.power_on, self.color)
        logging.debug(f"Submitted {job}")

    def handle_line(self, line: str) -> bool:
        """Handles one line of input. Returns False if the session should end."""
        words = line.split()
        if len(words) == 0:
            return True
        cmd = words[0].lower()
        args = words[1:]
        if cmd in ('quit', 'exit'):
            return False
        if cmd == 'help':
            print(CONTROL_HELP)
        elif cmd == 'list':
            self.list_devices()
        elif cmd == 'show':
            self.show()
        elif cmd == 'select':
            device = self.controller.select(int(self._one_arg(cmd, args)))
            print(f"Selected {device.display_name}")
        elif cmd in ('on', 'off'):
            self.power_on = cmd == 'on'
            self.submit()
        elif cmd == 'hue':
            self.hue = _ranged_float(self._one_arg(cmd, args), 0.0, 360.0)
            self.submit()
        elif cmd == 'saturation':
            self.saturation = _ranged_float(self._one_arg(cmd, args), 0.0, 1.0)
            self.submit()
        elif cmd == 'brightness':
            self.brightness = _ranged_float(self._one_arg(cmd, args), 0.0, 1.0)
            self.submit()
        elif cmd == 'kelvin':
            self.kelvin = int(_ranged_float(self._one_arg(cmd, args), 1500.0, 9000.0))
            self.submit()
        else:
            print(f"Unknown command {cmd!r}; type 'help' for a list of commands", file=sys.stderr)
        return True

    @staticmethod
    def _one_arg(cmd: str, args: List[str]) -> str:
        if len(args) != 1:
            raise ValueError(f"{cmd} takes exactly one argument")
        return args[0]

    def run(self, stream: TextIO) -> None:
        self.list_devices()
        while True:
            if stream.isatty():
                print("lifx> ", end='', flush=True)
            line = stream.readline()
            if line == '':
                break
            try:
                if not self.handle_line(line):
                    break
            except (ValueError, LifxError) as e:
                print(f"error: {e}", file=sys.stderr)

def _ranged_float(value: str, min_value: float, max_value: float) -> float:
    result = float(value)
    if not min_value <= result <= max_value:
        raise ValueError(f"Expected a value in {min_value}..{max_value}, got {result}")
    return result

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True
    _config: Optional[LifxControlConfig] = None

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    def get_config(self) -> LifxControlConfig:
        if self._config is None:
            config_file: Optional[str] = self._args.config_file
            if config_file is None:
                self._config = LifxControlConfig.default()
            else:
                self._config = ConfigContext().load_file(config_file, required_type=LifxControlConfig)
        return self._config

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    async def cmd_discover(self) -> int:
        config = self.get_config()
        window: Optional[float] = self._args.window
        if window is None:
            window = config.discovery_window
        fetch_labels: bool = not self._args.no_labels
        async with LifxClient(**config.client_kwargs()) as client:
            registry = await populate_registry(
                client,
                window=window,
                label_timeout=config.label_timeout,
                fetch_labels=fetch_labels,
              )
        print(json.dumps(registry.to_jsonable(), indent=2))
        return 0

    def _find_device_index(self, controller: LifxController) -> int:
        label: Optional[str] = self._args.label
        if label is None:
            index: int = self._args.index
            controller.devices.lookup(index)
            return index
        device: Optional[LifxDevice] = controller.devices.find_by_label(label)
        if device is None:
            raise CmdExitError(1, f"No device with label {label!r} was found")
        return controller.devices.index_of(device)

    def _run_set(self) -> int:
        color = HsbkColor.from_degrees(
            self._args.hue,
            self._args.saturation,
            self._args.brightness,
            self._args.kelvin,
          )
        power_on = not self._args.off
        with LifxController(self.get_config()) as controller:
            index = self._find_device_index(controller)
            controller.apply_and_wait(power_on, color, index=index, duration=self._args.duration)
            device = controller.devices[index]
        print(f"{device.display_name}: power={'on' if power_on else 'off'} color={color}")
        return 0

    async def cmd_set(self) -> int:
        # LifxController runs its own event loop thread and blocks its caller
        return await asyncio.get_running_loop().run_in_executor(None, self._run_set)

    def _run_control(self) -> int:
        with LifxController(self.get_config()) as controller:
            if len(controller.devices) == 0:
                raise CmdExitError(1, "No LIFX devices were found")
            ControlSession(controller).run(sys.stdin)
        return 0

    async def cmd_control(self) -> int:
        return await asyncio.get_running_loop().run_in_executor(None, self._run_control)

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the lifx-control command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(prog="lifx-control", description="Discover and control LIFX lights on the local network.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.add_argument('-c', '--config', dest='config_file', default=None,
                            help='''A JSON configuration file. Default: built-in defaults''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')


        # ======================= discover

        parser_discover = subparsers.add_parser('discover', description="Discover LIFX devices and print them as JSON")
        parser_discover.add_argument('--window', type=float, default=None,
                            help='''The amount of time to collect discovery replies, in seconds. Default: from configuration''')
        parser_discover.add_argument('--no-labels', dest='no_labels', action='store_true', default=False,
                            help='Do not request device labels')
        parser_discover.set_defaults(func=self.cmd_discover)

        # ======================= set

        parser_set = subparsers.add_parser('set', description="Set the power and color of one device")
        target_group = parser_set.add_mutually_exclusive_group()
        target_group.add_argument('-i', '--index', type=int, default=0,
                            help='''The index of the device, in discovery order. Default: 0''')
        target_group.add_argument('-l', '--label', default=None,
                            help='''The label of the device (case-insensitive)''')
        parser_set.add_argument('--off', action='store_true', default=False,
                            help='Turn the device off. Default: turn it on')
        parser_set.add_argument('--hue', type=float, default=0.0,
                            help='''Hue in degrees, 0..360. Default: 0''')
        parser_set.add_argument('--saturation', type=float, default=0.0,
                            help='''Saturation, 0..1. Default: 0''')
        parser_set.add_argument('--brightness', type=float, default=1.0,
                            help='''Brightness, 0..1. Default: 1''')
        parser_set.add_argument('--kelvin', type=int, default=3500,
                            help='''Color temperature in kelvin. Default: 3500''')
        parser_set.add_argument('--duration', type=int, default=0,
                            help='''Color transition time in milliseconds. Default: 0''')
        parser_set.set_defaults(func=self.cmd_set)

        # ======================= control

        parser_control = subparsers.add_parser('control',
                                description=f"Interactively control devices, reading commands from stdin.\n\n{CONTROL_HELP}",
                                formatter_class=argparse.RawDescriptionHelpFormatter)
        parser_control.set_defaults(func=self.cmd_control)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"lifx-control: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"lifx-control: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
