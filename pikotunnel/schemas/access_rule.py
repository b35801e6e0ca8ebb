# pikotunnel/schemas/access_rule.py
"""
Access rule Pydantic schemas
"""

from pydantic import BaseModel, ConfigDict
from enum import Enum


class AccessRuleStatus(str, Enum):
    PENDING = "pending"      # Filter pair not yet applied
    CREATED = "created"      # Filter pair live


class AccessRuleResponse(BaseModel):
    id: str
    peer_a_id: str
    peer_b_id: str
    status: AccessRuleStatus

    model_config = ConfigDict(from_attributes=True)
