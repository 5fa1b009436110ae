#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Simple utility functions used by this package
"""

from __future__ import annotations

import socket
from ipaddress import IPv4Address

import netifaces

from .internal_types import *

def parse_host_and_port(value: str, default_port: int) -> HostAndPort:
    """Parses "host" or "host:port" into a (host, port) tuple. IPv4 only."""
    value = value.strip()
    if value == '':
        raise ValueError("Empty address")
    if ':' in value:
        host, port_str = value.rsplit(':', 1)
        port = int(port_str)
    else:
        host, port = value, default_port
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range: {port}")
    IPv4Address(host)
    return (host, port)

def format_host_and_port(addr: HostAndPort) -> str:
    return f"{addr[0]}:{addr[1]}"

def get_default_ip_gateway(address_family: Union[socket.AddressFamily, int]=socket.AF_INET) -> Tuple[Optional[str], Optional[str]]:
    """Returns the (gateway_ip_address: str, gateway_interface_name: str) for the default IP gateway in the
       requested family, if any.
       returns (None, None) if there is no default gateway in the requested family."""
    assert int(address_family) in (int(socket.AF_INET), int(socket.AF_INET6))
    netiface_family = netifaces.AF_INET if int(address_family) == int(socket.AF_INET) else netifaces.AF_INET6
    gws = netifaces.gateways()
    if "default" in gws:
        default_gateway_infos = gws["default"]
        if netiface_family in default_gateway_infos:
            gw_ip, gw_interface_name = default_gateway_infos[netiface_family][:2]
            return (gw_ip, gw_interface_name)
    return (None, None)

def get_local_broadcast_addresses() -> List[str]:
    """Returns the IPv4 broadcast addresses of the local network interfaces, excluding loopback.
       The result is sorted in a way that attempts to place the "preferred" address first:
           1. Addresses on the default gateway interface precede all other addresses.
           2. Addresses beginning with 172. follow other addresses. This is a hack to
              deprioritize local docker network addresses.
    """
    result_with_priority: List[Tuple[int, str]] = []
    _, default_gateway_ifname = get_default_ip_gateway(socket.AF_INET)
    for ifname in netifaces.interfaces():
        ifinfo = netifaces.ifaddresses(ifname)
        for addrinfo in ifinfo.get(netifaces.AF_INET, []):
            broadcast = addrinfo.get('broadcast')
            ip_str = addrinfo.get('addr')
            if broadcast is None or ip_str is None or IPv4Address(ip_str).is_loopback:
                continue
            if ifname == default_gateway_ifname:
                priority = 0
            elif broadcast.startswith('172.'):
                priority = 2
            else:
                priority = 1
            result_with_priority.append((priority, broadcast))
    result: List[str] = []
    for _, broadcast in sorted(result_with_priority):
        if broadcast not in result:
            result.append(broadcast)
    return result
