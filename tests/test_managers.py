"""
Tests for PeerManager and AccessRuleManager: the request-side half of the
relay, which records desired state and queues jobs.
"""

import ipaddress
import random

import pytest

from pikotunnel.core.errors import NotFoundError, SubnetExhaustedError, ValidationError
from pikotunnel.core.ipam import IPAMService
from pikotunnel.core.job_queue import Job, JobQueue
from pikotunnel.core.lifecycle import peer_sources
from pikotunnel.core.peer_manager import PeerManager
from pikotunnel.database import store
from pikotunnel.database.models import AccessRuleStatus, PeerStatus


def _drain_queue(queue):
    jobs = []
    while not queue.empty():
        jobs.append(queue.get_nowait())
        queue.task_done()
    return jobs


class TestPeerManager:

    def test_create_peer_records_pending_and_enqueues(self, runtime, db):
        peer = runtime.peer_manager.create_peer(db)

        assert peer.status == PeerStatus.PENDING.value
        assert ipaddress.IPv4Address(peer.ip) in ipaddress.IPv4Network("10.8.0.0/24")
        assert peer.ip not in ("10.8.0.0", "10.8.0.1", "10.8.0.255")
        assert peer.private_key and peer.public_key
        assert _drain_queue(runtime.queue) == [Job.peer(peer.id)]

    def test_addresses_and_keys_are_unique(self, runtime, db):
        peers = [runtime.peer_manager.create_peer(db) for _ in range(40)]

        assert len({p.ip for p in peers}) == 40
        assert len({p.public_key for p in peers}) == 40
        assert len({p.id for p in peers}) == 40

    def test_subnet_exhaustion(self, db):
        # /30 around the relay leaves a single client address
        ipam = IPAMService("10.9.0.1/30", "10.9.0.1", max_attempts=4, rng=random.Random(0))
        manager = PeerManager(ipam, JobQueue(maxsize=8))

        first = manager.create_peer(db)
        assert first.ip == "10.9.0.2"
        with pytest.raises(SubnetExhaustedError):
            manager.create_peer(db)
        assert len(store.list_peers(db)) == 1

    def test_request_delete_marks_deleting_and_enqueues(self, runtime, db):
        peer = runtime.peer_manager.create_peer(db)
        _drain_queue(runtime.queue)

        assert runtime.peer_manager.request_delete(db, peer.id) is True

        db.expire_all()
        assert store.get_peer(db, peer.id).status == PeerStatus.DELETING.value
        assert _drain_queue(runtime.queue) == [Job.peer(peer.id)]

    def test_request_delete_noop_cases(self, runtime, db):
        peer = runtime.peer_manager.create_peer(db)
        runtime.peer_manager.request_delete(db, peer.id)
        _drain_queue(runtime.queue)

        assert runtime.peer_manager.request_delete(db, peer.id) is False
        assert runtime.peer_manager.request_delete(db, "unknown") is False
        assert runtime.queue.empty()

    def test_require_peer_raises_not_found(self, runtime, db):
        with pytest.raises(NotFoundError):
            runtime.peer_manager.require_peer(db, "unknown")

    def test_get_peer_status(self, runtime, db):
        peer = runtime.peer_manager.create_peer(db)
        assert runtime.peer_manager.get_peer_status(db, peer.id) == "pending"


class TestAccessRuleManager:

    @pytest.fixture
    def pair(self, runtime, db):
        p1 = runtime.peer_manager.create_peer(db)
        p2 = runtime.peer_manager.create_peer(db)
        _drain_queue(runtime.queue)
        return p1, p2

    def test_create_is_idempotent_in_either_order(self, runtime, db, pair):
        p1, p2 = pair
        manager = runtime.access_rule_manager

        first = manager.create_access_rule(db, p1.id, p2.id)
        again = manager.create_access_rule(db, p1.id, p2.id)
        reversed_ = manager.create_access_rule(db, p2.id, p1.id)

        assert first.id == again.id == reversed_.id
        assert first.status == AccessRuleStatus.PENDING.value
        assert len(store.list_access_rules(db)) == 1
        assert _drain_queue(runtime.queue) == [Job.access_rule(first.id)]

    def test_lookup_is_unordered(self, runtime, db, pair):
        p1, p2 = pair
        rule = runtime.access_rule_manager.create_access_rule(db, p1.id, p2.id)

        assert runtime.access_rule_manager.get_access_rule(db, p2.id, p1.id).id == rule.id

    def test_ids_are_trimmed(self, runtime, db, pair):
        p1, p2 = pair
        rule = runtime.access_rule_manager.create_access_rule(db, f" {p1.id}", f"{p2.id} ")

        assert {rule.peer_a_id, rule.peer_b_id} == {p1.id, p2.id}

    def test_same_peer_twice_rejected(self, runtime, db, pair):
        p1, _ = pair
        with pytest.raises(ValidationError):
            runtime.access_rule_manager.create_access_rule(db, p1.id, p1.id)
        assert runtime.queue.empty()

    def test_unknown_peer_rejected(self, runtime, db, pair):
        p1, _ = pair
        with pytest.raises(ValidationError, match="not found"):
            runtime.access_rule_manager.create_access_rule(db, p1.id, "ghost")
        assert store.list_access_rules(db) == []

    def test_deleting_peer_rejected(self, runtime, db, pair):
        p1, p2 = pair
        runtime.peer_manager.request_delete(db, p2.id)

        with pytest.raises(ValidationError, match="being deleted"):
            runtime.access_rule_manager.create_access_rule(db, p1.id, p2.id)

    def test_delete_request_between_validation_and_insert_withdraws_rule(self, runtime, db, pair, monkeypatch):
        p1, p2 = pair
        original = store.add_access_rule

        def insert_then_delete_request(session, rule):
            result = original(session, rule)
            store.transition_peer_status(session, p2.id, peer_sources(PeerStatus.DELETING), PeerStatus.DELETING)
            return result

        monkeypatch.setattr(store, "add_access_rule", insert_then_delete_request)

        with pytest.raises(ValidationError, match="being deleted"):
            runtime.access_rule_manager.create_access_rule(db, p1.id, p2.id)
        assert store.find_access_rule(db, p1.id, p2.id) is None
        assert runtime.queue.empty()

    def test_delete_removes_record_and_filter_pair(self, runtime, db, pair, fake_system):
        p1, p2 = pair
        runtime.worker.drain()
        runtime.access_rule_manager.create_access_rule(db, p1.id, p2.id)
        runtime.worker.drain()
        assert len(fake_system.accept_rules()) == 2

        deleted = runtime.access_rule_manager.delete_access_rule(db, p2.id, p1.id)

        assert {deleted.peer_a_id, deleted.peer_b_id} == {p1.id, p2.id}
        assert store.find_access_rule(db, p1.id, p2.id) is None
        assert fake_system.accept_rules() == []
        assert runtime.queue.empty()

    def test_delete_pending_rule_before_worker(self, runtime, db, pair, fake_system):
        p1, p2 = pair
        runtime.access_rule_manager.create_access_rule(db, p1.id, p2.id)

        runtime.access_rule_manager.delete_access_rule(db, p1.id, p2.id)

        # Removal of a pair that was never applied is logged, not raised
        assert store.find_access_rule(db, p1.id, p2.id) is None
        assert fake_system.accept_rules() == []

    def test_delete_unknown_rule(self, runtime, db, pair):
        p1, p2 = pair
        with pytest.raises(NotFoundError):
            runtime.access_rule_manager.delete_access_rule(db, p1.id, p2.id)

    def test_rules_for_peer(self, runtime, db):
        hub, a, b = (runtime.peer_manager.create_peer(db) for _ in range(3))
        runtime.access_rule_manager.create_access_rule(db, hub.id, a.id)
        runtime.access_rule_manager.create_access_rule(db, b.id, hub.id)
        runtime.access_rule_manager.create_access_rule(db, a.id, b.id)

        assert len(store.list_access_rules_for_peer(db, hub.id)) == 2
        assert len(store.list_access_rules(db)) == 3
