# pikotunnel/database/models.py
"""
SQLAlchemy Database Models for the PikoTunnel relay
"""

from sqlalchemy import (
    Column, String, DateTime, Text, ForeignKey,
    Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from datetime import datetime
import enum

Base = declarative_base()


class PeerStatus(str, enum.Enum):
    """Peer lifecycle status"""
    PENDING = "pending"      # Recorded, not yet on the tunnel interface
    CREATED = "created"      # Present on the tunnel interface
    DELETING = "deleting"    # Teardown requested, worker will remove it


class AccessRuleStatus(str, enum.Enum):
    """Access rule lifecycle status"""
    PENDING = "pending"      # Recorded, filter pair not yet applied
    CREATED = "created"      # Filter pair present in the chain


class Peer(Base):
    """
    Peer table - one provisioned tunnel endpoint on the relay
    Keys are generated together at creation and never change
    """
    __tablename__ = "peers"

    id = Column(String(36), primary_key=True,
                comment="UUID4 assigned at creation")

    # Network
    ip = Column(String(15), unique=True, nullable=False, index=True,
                comment="Tunnel address without prefix (e.g. 10.8.0.2)")

    # WireGuard Keys
    public_key = Column(String(44), unique=True, nullable=False,
                        comment="WireGuard public key (Base64)")
    private_key = Column(Text, nullable=False,
                         comment="WireGuard private key (Base64)")

    # Status
    status = Column(String(20), default=PeerStatus.PENDING.value, nullable=False, index=True,
                    comment="Peer status: pending, created, deleting")

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Peer(id={self.id}, ip={self.ip}, status={self.status})>"

    @property
    def allowed_ips(self) -> str:
        return f"{self.ip}/32"


class AccessRule(Base):
    """
    Access Rule table - allows bidirectional traffic between two peers
    Default deny: peers without a rule cannot reach each other
    """
    __tablename__ = "access_rules"

    id = Column(String(36), primary_key=True,
                comment="UUID4 assigned at creation")

    # Endpoints, kept in the order they were requested
    peer_a_id = Column(String(36), ForeignKey("peers.id"), nullable=False, index=True)
    peer_b_id = Column(String(36), ForeignKey("peers.id"), nullable=False, index=True)

    # Both ids sorted and joined, so {a, b} and {b, a} collide
    pair_key = Column(String(73), nullable=False,
                      comment="Order-independent identity of the peer pair")

    status = Column(String(20), default=AccessRuleStatus.PENDING.value, nullable=False, index=True,
                    comment="Access rule status: pending, created")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("pair_key", name="uq_access_rules_pair_key"),
        Index("ix_access_rules_peers", "peer_a_id", "peer_b_id"),
    )

    def __repr__(self):
        return f"<AccessRule(id={self.id}, peers={self.peer_a_id}<->{self.peer_b_id}, status={self.status})>"

    def other_peer_id(self, peer_id: str) -> str:
        """Return the endpoint that is not peer_id"""
        return self.peer_b_id if self.peer_a_id == peer_id else self.peer_a_id
