"""
Database modules
"""

from .session import (
    init_db,
    DatabaseManager,
    create_db_engine,
    create_session_factory,
)
from .models import Base, Peer, AccessRule, PeerStatus, AccessRuleStatus

__all__ = [
    # Session
    "init_db",
    "DatabaseManager",
    "create_db_engine",
    "create_session_factory",
    # Models
    "Base",
    "Peer",
    "AccessRule",
    "PeerStatus",
    "AccessRuleStatus",
]
