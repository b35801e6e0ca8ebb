# pikotunnel/core/lifecycle.py
"""
Peer and AccessRule lifecycle
Pure transition tables; nothing here touches the store or the network

Peer:        pending --provision--> created
             pending|created --delete request--> deleting
             deleting --teardown--> (record removed)
AccessRule:  pending --apply--> created
"""

import enum
from typing import Dict, FrozenSet, Union

from pikotunnel.database.models import PeerStatus, AccessRuleStatus


class PeerAction(str, enum.Enum):
    """What the worker must do with a peer in a given status"""
    PROVISION = "provision"
    TEARDOWN = "teardown"
    NONE = "none"


class AccessRuleAction(str, enum.Enum):
    APPLY = "apply"
    NONE = "none"


PEER_TRANSITIONS: Dict[PeerStatus, FrozenSet[PeerStatus]] = {
    PeerStatus.PENDING: frozenset({PeerStatus.CREATED, PeerStatus.DELETING}),
    PeerStatus.CREATED: frozenset({PeerStatus.DELETING}),
    PeerStatus.DELETING: frozenset(),
}

ACCESS_RULE_TRANSITIONS: Dict[AccessRuleStatus, FrozenSet[AccessRuleStatus]] = {
    AccessRuleStatus.PENDING: frozenset({AccessRuleStatus.CREATED}),
    AccessRuleStatus.CREATED: frozenset(),
}

_PEER_ACTIONS = {
    PeerStatus.PENDING: PeerAction.PROVISION,
    PeerStatus.DELETING: PeerAction.TEARDOWN,
}

_ACCESS_RULE_ACTIONS = {
    AccessRuleStatus.PENDING: AccessRuleAction.APPLY,
}


def _peer_status(status: Union[str, PeerStatus]) -> PeerStatus:
    return PeerStatus(status)


def _rule_status(status: Union[str, AccessRuleStatus]) -> AccessRuleStatus:
    return AccessRuleStatus(status)


def can_transition_peer(current, target) -> bool:
    return _peer_status(target) in PEER_TRANSITIONS[_peer_status(current)]


def can_transition_access_rule(current, target) -> bool:
    return _rule_status(target) in ACCESS_RULE_TRANSITIONS[_rule_status(current)]


def peer_sources(target) -> FrozenSet[PeerStatus]:
    """Statuses a peer may move to target from"""
    target = _peer_status(target)
    return frozenset(s for s, targets in PEER_TRANSITIONS.items() if target in targets)


def access_rule_sources(target) -> FrozenSet[AccessRuleStatus]:
    target = _rule_status(target)
    return frozenset(s for s, targets in ACCESS_RULE_TRANSITIONS.items() if target in targets)


def peer_action(status) -> PeerAction:
    return _PEER_ACTIONS.get(_peer_status(status), PeerAction.NONE)


def access_rule_action(status) -> AccessRuleAction:
    return _ACCESS_RULE_ACTIONS.get(_rule_status(status), AccessRuleAction.NONE)


def is_delete_requestable(status) -> bool:
    return can_transition_peer(status, PeerStatus.DELETING)


def needs_recovery_peer(status) -> bool:
    """Peers whose last transition never completed"""
    return peer_action(status) is not PeerAction.NONE


def needs_recovery_access_rule(status) -> bool:
    return access_rule_action(status) is not AccessRuleAction.NONE
