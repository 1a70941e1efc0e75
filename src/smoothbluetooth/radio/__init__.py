"""
The radio package is the boundary to the platform's bluetooth adapter: adapter state, paired devices,
discovery, and the listening and client channels used by the connection workers.

A concrete implementation for Linux uses RFCOMM sockets and the bluetoothctl tool.
"""
