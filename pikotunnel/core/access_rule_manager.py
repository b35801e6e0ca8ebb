# pikotunnel/core/access_rule_manager.py
"""
Access Rule Manager - Handles access rule requests between peers
"""

import uuid
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from pikotunnel.database import store
from pikotunnel.database.models import AccessRule, AccessRuleStatus, PeerStatus
from .errors import NotFoundError, ValidationError
from .job_queue import Job, JobQueue
from .wireguard_service import NetworkDriver

logger = logging.getLogger(__name__)


class AccessRuleManager:
    """
    Access Rule Manager

    Responsibilities:
    1. Create rules idempotently for an unordered peer pair
    2. Delete rules synchronously (filter pair and record)

    Rule creation goes through the worker; deletion does not.
    """

    def __init__(self, driver: NetworkDriver, queue: JobQueue):
        self.driver = driver
        self.queue = queue

    def create_access_rule(self, db: Session, peer_a_id: str, peer_b_id: str) -> AccessRule:
        """
        Allow traffic between two peers

        Returns:
            The existing rule for {peer_a_id, peer_b_id} unchanged, or a new pending one

        Raises:
            ValidationError: Same peer twice, unknown peer, or peer being deleted
                (also when the delete request races the insert)
        """
        peer_a_id = peer_a_id.strip()
        peer_b_id = peer_b_id.strip()

        existing = store.find_access_rule(db, peer_a_id, peer_b_id)
        if existing is not None:
            return existing

        if peer_a_id == peer_b_id:
            raise ValidationError("peer_a_id and peer_b_id cannot be the same")

        for peer_id in (peer_a_id, peer_b_id):
            peer = store.get_peer(db, peer_id)
            if peer is None:
                raise ValidationError(f"Peer {peer_id} not found")
            if peer.status == PeerStatus.DELETING.value:
                raise ValidationError(f"Peer {peer_id} is being deleted")

        rule = AccessRule(
            id=str(uuid.uuid4()),
            peer_a_id=peer_a_id,
            peer_b_id=peer_b_id,
            status=AccessRuleStatus.PENDING.value,
        )
        try:
            store.add_access_rule(db, rule)
        except IntegrityError:
            # Lost a race against the same pair; hand back the winner
            winner = store.find_access_rule(db, peer_a_id, peer_b_id)
            if winner is None:
                raise
            return winner

        # A delete request may have landed between validation and insert
        for peer_id in (peer_a_id, peer_b_id):
            peer_status = store.get_peer_status(db, peer_id)
            if peer_status is None or peer_status == PeerStatus.DELETING.value:
                store.delete_access_rule(db, rule.id)
                logger.info(f"Access rule {rule.id} withdrawn, peer {peer_id} deleted meanwhile")
                raise ValidationError(f"Peer {peer_id} is being deleted")

        logger.info(f"Access rule {rule.id} registered: {peer_a_id} <-> {peer_b_id}")
        self.queue.put(Job.access_rule(rule.id))
        return rule

    def get_access_rule(self, db: Session, peer_a_id: str, peer_b_id: str) -> Optional[AccessRule]:
        return store.find_access_rule(db, peer_a_id.strip(), peer_b_id.strip())

    def list_access_rules(self, db: Session) -> List[AccessRule]:
        return store.list_access_rules(db)

    def delete_access_rule(self, db: Session, peer_a_id: str, peer_b_id: str) -> AccessRule:
        """
        Remove a rule immediately, bypassing the worker queue

        The record goes first: a worker applying this rule concurrently then
        fails its status update and revokes the pair itself.

        Raises:
            NotFoundError: If no rule exists for the pair
        """
        rule = self.get_access_rule(db, peer_a_id, peer_b_id)
        if rule is None:
            raise NotFoundError(f"Access rule {peer_a_id} <-> {peer_b_id} not found")

        ip_a = store.get_peer_ip(db, rule.peer_a_id)
        ip_b = store.get_peer_ip(db, rule.peer_b_id)

        store.delete_access_rule(db, rule.id)

        if ip_a is None or ip_b is None:
            logger.warning(f"Access rule {rule.id} had a missing endpoint, no filter pair to remove")
        else:
            result = self.driver.remove_filter_pair(ip_a, ip_b)
            if not result.ok:
                logger.error(f"[ERROR] Failed to remove filter pair for rule {rule.id}: {result.diagnostic}")

        logger.info(f"Access rule {rule.id} deleted")
        return rule
