# pikotunnel/schemas/peer.py
"""
Peer-related Pydantic schemas
"""

from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class PeerStatus(str, Enum):
    """Peer lifecycle status"""
    PENDING = "pending"      # Waiting for the worker
    CREATED = "created"      # Live on the relay
    DELETING = "deleting"    # Teardown in progress


class PeerResponse(BaseModel):
    """Full peer record, private key included"""
    id: str
    ip: str = Field(..., examples=["10.8.0.17"])
    public_key: str
    private_key: str
    status: PeerStatus

    model_config = ConfigDict(from_attributes=True)


class PeerStatusResponse(BaseModel):
    status: PeerStatus


class PeerConfigResponse(BaseModel):
    """Values for configuring the client side of the tunnel"""
    private_key: str
    public_key: str
    ip: str
    ip_with_mask: str = Field(..., examples=["10.8.0.17/32"])
    allowed_ips: str = Field(..., examples=["10.8.0.0/24"])
    relay_public_key: str
    endpoint: str = Field(..., examples=["203.0.113.10:51820"])
    persistent_keepalive: int = 25
