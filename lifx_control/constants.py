# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

LIFX_PORT = 56700
"""The UDP port number LIFX devices listen on."""

LIFX_BROADCAST_ADDRESS = "255.255.255.255"
"""The limited broadcast address used for device discovery."""

LIFX_PROTOCOL_NUMBER = 1024
"""The protocol number carried in every LIFX frame header."""

LIFX_HEADER_SIZE = 36
"""The size in bytes of the frame header + frame address + protocol header."""

LIFX_LABEL_SIZE = 32
"""The fixed size in bytes of a device label field."""

MAX_SEQUENCE = 256
"""The number of distinct values of the 8-bit sequence field used as a correlation token."""

SERVICE_UDP = 1
"""The StateService service code for the UDP LAN protocol."""

DEFAULT_DISCOVERY_WINDOW = 5.0
"""The default amount of time (in seconds) to collect discovery replies."""

DEFAULT_REQUEST_TIMEOUT = 1.0
"""The default amount of time (in seconds) to wait for the reply to a single request."""

DEFAULT_LABEL_TIMEOUT = 1.0
"""The default amount of time (in seconds) to wait for a device label."""

MAX_CONCURRENT_LABEL_REQUESTS = 64
"""The most GetLabel requests populate_registry() keeps in flight at once."""

DEFAULT_STOP_TIMEOUT = 5.0
"""The default amount of time (in seconds) to wait for the execution bridge thread to exit."""
