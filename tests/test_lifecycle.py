"""
Tests for the peer and access rule state machines.
"""

import pytest

from pikotunnel.core.lifecycle import (
    AccessRuleAction,
    PeerAction,
    access_rule_action,
    access_rule_sources,
    can_transition_access_rule,
    can_transition_peer,
    is_delete_requestable,
    needs_recovery_access_rule,
    needs_recovery_peer,
    peer_action,
    peer_sources,
)
from pikotunnel.database.models import AccessRuleStatus, PeerStatus


@pytest.mark.parametrize("current,target,allowed", [
    (PeerStatus.PENDING, PeerStatus.CREATED, True),
    (PeerStatus.PENDING, PeerStatus.DELETING, True),
    (PeerStatus.CREATED, PeerStatus.DELETING, True),
    (PeerStatus.CREATED, PeerStatus.PENDING, False),
    (PeerStatus.DELETING, PeerStatus.CREATED, False),
    (PeerStatus.DELETING, PeerStatus.PENDING, False),
])
def test_peer_transitions(current, target, allowed):
    assert can_transition_peer(current, target) is allowed


def test_access_rule_transitions():
    assert can_transition_access_rule(AccessRuleStatus.PENDING, AccessRuleStatus.CREATED)
    assert not can_transition_access_rule(AccessRuleStatus.CREATED, AccessRuleStatus.PENDING)


def test_statuses_accept_raw_strings():
    assert can_transition_peer("pending", "created")
    assert peer_action("deleting") is PeerAction.TEARDOWN


def test_peer_actions():
    assert peer_action(PeerStatus.PENDING) is PeerAction.PROVISION
    assert peer_action(PeerStatus.DELETING) is PeerAction.TEARDOWN
    assert peer_action(PeerStatus.CREATED) is PeerAction.NONE


def test_access_rule_actions():
    assert access_rule_action(AccessRuleStatus.PENDING) is AccessRuleAction.APPLY
    assert access_rule_action(AccessRuleStatus.CREATED) is AccessRuleAction.NONE


def test_sources():
    assert peer_sources(PeerStatus.CREATED) == {PeerStatus.PENDING}
    assert peer_sources(PeerStatus.DELETING) == {PeerStatus.PENDING, PeerStatus.CREATED}
    assert access_rule_sources(AccessRuleStatus.CREATED) == {AccessRuleStatus.PENDING}


def test_delete_requestable_and_recovery():
    assert is_delete_requestable(PeerStatus.PENDING)
    assert is_delete_requestable(PeerStatus.CREATED)
    assert not is_delete_requestable(PeerStatus.DELETING)

    assert needs_recovery_peer(PeerStatus.PENDING)
    assert needs_recovery_peer(PeerStatus.DELETING)
    assert not needs_recovery_peer(PeerStatus.CREATED)
    assert needs_recovery_access_rule(AccessRuleStatus.PENDING)
    assert not needs_recovery_access_rule(AccessRuleStatus.CREATED)


def test_unknown_status_rejected():
    with pytest.raises(ValueError):
        peer_action("gone")
