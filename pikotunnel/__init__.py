"""
PikoTunnel Relay
Provisions WireGuard peers on a shared relay and controls which peers may talk
"""

__version__ = "1.0.0"
