# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Configuration of a LIFX LAN client and controller.

Example configuration file (all properties optional):

    {
      "discovery_window": 2.5,
      "request_timeout": 1.0,
      "label_timeout": 1.0,
      "broadcast_addresses": ["192.168.1.255", "10.0.0.255:56700"],
      "bind_address": "0.0.0.0",
      "port": 56700
    }

"broadcast_addresses" may also be the string "auto", to probe the broadcast address of every
local network interface.
"""

from typing import Optional, Any, Dict, List

from ..internal_types import HostAndPort, JsonableDict
from ..exceptions import LifxConfigError
from ..constants import (
    LIFX_PORT,
    LIFX_BROADCAST_ADDRESS,
    DEFAULT_DISCOVERY_WINDOW,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_LABEL_TIMEOUT,
  )
from ..util import parse_host_and_port, get_local_broadcast_addresses
from .base import Config
from .context import ConfigContext

class LifxControlConfig(Config):
  discovery_window: float = DEFAULT_DISCOVERY_WINDOW
  request_timeout: float = DEFAULT_REQUEST_TIMEOUT
  label_timeout: float = DEFAULT_LABEL_TIMEOUT
  bind_address: str = "0.0.0.0"
  port: int = LIFX_PORT
  broadcast_addresses: List[HostAndPort]

  def __init__(self):
    super().__init__()
    self.broadcast_addresses = [(LIFX_BROADCAST_ADDRESS, LIFX_PORT)]

  @classmethod
  def default(cls) -> 'LifxControlConfig':
    cfg = cls()
    cfg.load_json_data(ConfigContext(), {})
    return cfg

  def _get_positive_float(self, key: str, default: float) -> float:
    result = self.get_cfg_property_float(key, default)
    if result <= 0.0:
      raise LifxConfigError(f"Config: Expected property {key} to be > 0, got {result}")
    return result

  def bake(self):
    self.discovery_window = self._get_positive_float('discovery_window', DEFAULT_DISCOVERY_WINDOW)
    self.request_timeout = self._get_positive_float('request_timeout', DEFAULT_REQUEST_TIMEOUT)
    self.label_timeout = self._get_positive_float('label_timeout', DEFAULT_LABEL_TIMEOUT)
    self.bind_address = self.get_cfg_property_str('bind_address', "0.0.0.0")
    self.port = self.get_cfg_property_int('port', LIFX_PORT)
    if not 0 < self.port < 65536:
      raise LifxConfigError(f"Config: Expected property port to be in 1..65535, got {self.port}")
    raw_addresses = self.get_cfg_property('broadcast_addresses', [LIFX_BROADCAST_ADDRESS])
    if raw_addresses == "auto":
      hosts = get_local_broadcast_addresses()
      if len(hosts) == 0:
        hosts = [LIFX_BROADCAST_ADDRESS]
      self.broadcast_addresses = [(host, self.port) for host in hosts]
    elif isinstance(raw_addresses, list) and len(raw_addresses) > 0:
      addresses: List[HostAndPort] = []
      for raw in raw_addresses:
        if not isinstance(raw, str):
          raise LifxConfigError(f"Config: Expected broadcast_addresses entries to be str, got {type(raw)}")
        try:
          addresses.append(parse_host_and_port(raw, default_port=self.port))
        except ValueError as e:
          raise LifxConfigError(f"Config: Invalid broadcast address {raw!r}: {e}") from e
      self.broadcast_addresses = addresses
    else:
      raise LifxConfigError(f"Config: Expected broadcast_addresses to be \"auto\" or a nonempty list, got {raw_addresses!r}")

  def client_kwargs(self) -> Dict[str, Any]:
    """Keyword arguments for LifxClient()"""
    return dict(
        bind_address=self.bind_address,
        port=self.port,
        broadcast_addresses=list(self.broadcast_addresses),
        request_timeout=self.request_timeout,
      )

  def to_jsonable(self) -> JsonableDict:
    return {
        "discovery_window": self.discovery_window,
        "request_timeout": self.request_timeout,
        "label_timeout": self.label_timeout,
        "bind_address": self.bind_address,
        "port": self.port,
        "broadcast_addresses": [f"{h}:{p}" for h, p in self.broadcast_addresses],
      }
