"""
Pydantic Schemas for the relay API
Organized by domain: peers, access rules
"""

from .base import ErrorResponse, HealthResponse
from .peer import PeerStatus, PeerResponse, PeerStatusResponse, PeerConfigResponse
from .access_rule import AccessRuleStatus, AccessRuleResponse

__all__ = [
    # Base
    "ErrorResponse",
    "HealthResponse",
    # Peer
    "PeerStatus",
    "PeerResponse",
    "PeerStatusResponse",
    "PeerConfigResponse",
    # Access rule
    "AccessRuleStatus",
    "AccessRuleResponse",
]
