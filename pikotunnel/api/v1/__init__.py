"""
API v1 modules
"""

from . import peers, access_rules

__all__ = ["peers", "access_rules"]
