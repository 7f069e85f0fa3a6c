"""
ipocalypse - drive a layer-2 segment to address exhaustion.

Launches containers on a shared macvlan network, one lease per container,
until the subnet runs out of addresses.
"""

__version__ = "0.1.0"
