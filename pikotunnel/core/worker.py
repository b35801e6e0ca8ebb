# pikotunnel/core/worker.py
"""
Convergence Worker
Single consumer that drives peers and access rules to their target state
"""

import threading
import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pikotunnel.database import store
from pikotunnel.database.models import Peer, PeerStatus, AccessRuleStatus
from .job_queue import Job, JobKind, JobQueue
from .lifecycle import (
    PeerAction,
    AccessRuleAction,
    peer_action,
    access_rule_action,
    peer_sources,
    access_rule_sources,
)
from .wireguard_service import NetworkDriver, OperationResult

logger = logging.getLogger(__name__)

# Cascade-and-delete rounds before a teardown is abandoned
_DELETE_ATTEMPTS = 3


class ConvergenceWorker:
    """
    Drains the job queue one job at a time

    Responsibilities:
    1. Provision pending peers on the tunnel interface
    2. Tear down deleting peers and every rule that references them
    3. Apply pending access rules to the filter chain

    It is the only writer of status transitions and the only caller of the
    driver's mutating operations (apart from bring-up and synchronous rule
    deletion). Jobs never raise: failures are logged and the job abandoned,
    leaving the entity in its pre-job status for the next recovery pass.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        driver: NetworkDriver,
        queue: JobQueue,
        name: str = "convergence-worker"
    ):
        self.session_factory = session_factory
        self.driver = driver
        self.queue = queue
        self.name = name
        self._thread: Optional[threading.Thread] = None

    # === Thread control ===

    def start(self) -> None:
        if self.is_alive:
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Convergence worker started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Close the queue, let the backlog finish, and wait for the thread"""
        self.queue.close()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Convergence worker still busy after stop timeout")
            else:
                logger.info("Convergence worker stopped")

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while True:
            job = self.queue.get()
            if job is None:
                break
            try:
                self.process(job)
            finally:
                self.queue.task_done()

    def drain(self) -> int:
        """Process every queued job on the calling thread; returns how many ran"""
        count = 0
        while True:
            job = self.queue.get_nowait()
            if job is None:
                return count
            try:
                self.process(job)
            finally:
                self.queue.task_done()
            count += 1

    # === Dispatch ===

    def process(self, job: Job) -> None:
        logger.debug(f"Processing {job.kind.value} job {job.id}")
        db = self.session_factory()
        try:
            if job.kind is JobKind.PEER:
                self._process_peer(db, job.id)
            elif job.kind is JobKind.ACCESS_RULE:
                self._process_access_rule(db, job.id)
            else:
                logger.error(f"[ERROR] Unknown job kind {job.kind!r} for {job.id}")
        except Exception:
            db.rollback()
            logger.exception(f"[ERROR] Abandoned {job.kind.value} job {job.id}")
        finally:
            db.close()

    def _check(self, result: OperationResult, context: str) -> bool:
        if not result.ok:
            logger.error(f"[ERROR] Failed to {result.operation} ({context}): {result.diagnostic}")
        return result.ok

    # === Peers ===

    def _process_peer(self, db: Session, peer_id: str) -> None:
        peer = store.get_peer(db, peer_id)
        if peer is None:
            logger.error(f"[ERROR] Peer {peer_id} not found, dropping job")
            return

        action = peer_action(peer.status)
        if action is PeerAction.PROVISION:
            self._provision_peer(db, peer)
        elif action is PeerAction.TEARDOWN:
            self._teardown_peer(db, peer)
        else:
            logger.debug(f"Peer {peer_id} is {peer.status}, nothing to do")

    def _provision_peer(self, db: Session, peer: Peer) -> None:
        self._check(self.driver.add_tunnel_peer(peer.public_key, peer.ip), f"peer {peer.id}")

        if store.transition_peer_status(db, peer.id, peer_sources(PeerStatus.CREATED), PeerStatus.CREATED):
            logger.info(f"Peer {peer.id} ({peer.ip}) created")
        else:
            # Deleted while we were provisioning; its teardown job is queued
            logger.info(f"Peer {peer.id} no longer pending after provisioning, status left as is")

    def _cascade_rules(self, db: Session, peer_id: str, peer_ip: str) -> int:
        """Revoke and delete every rule that references the peer, until none is left"""
        removed = 0
        while True:
            rules = store.list_access_rules_for_peer(db, peer_id)
            if not rules:
                return removed
            for rule in rules:
                other_id = rule.other_peer_id(peer_id)
                other_ip = store.get_peer_ip(db, other_id)
                if other_ip is None:
                    logger.warning(f"Access rule {rule.id} points at missing peer {other_id}, removing record only")
                else:
                    self._check(self.driver.remove_filter_pair(peer_ip, other_ip), f"rule {rule.id}")
                store.delete_access_rule(db, rule.id)
                logger.info(f"Access rule {rule.id} removed with peer {peer_id}")
                removed += 1

    def _teardown_peer(self, db: Session, peer: Peer) -> None:
        # A rollback below expires the instance
        peer_id, peer_ip, public_key = peer.id, peer.ip, peer.public_key

        removed = self._cascade_rules(db, peer_id, peer_ip)
        self._check(self.driver.remove_tunnel_peer(public_key), f"peer {peer_id}")

        for attempt in range(1, _DELETE_ATTEMPTS + 1):
            try:
                store.delete_peer(db, peer_id)
                break
            except IntegrityError:
                # A rule slipped in after the cascade; its creator backs out on seeing us deleting
                if attempt == _DELETE_ATTEMPTS:
                    raise
                logger.warning(f"Access rule added to peer {peer_id} during teardown, cascading again")
                removed += self._cascade_rules(db, peer_id, peer_ip)

        logger.info(f"Peer {peer_id} ({peer_ip}) deleted, {removed} access rule(s) cascaded")

    # === Access rules ===

    def _process_access_rule(self, db: Session, rule_id: str) -> None:
        rule = store.get_access_rule(db, rule_id)
        if rule is None:
            logger.error(f"[ERROR] Access rule {rule_id} not found, dropping job")
            return

        if access_rule_action(rule.status) is AccessRuleAction.NONE:
            logger.debug(f"Access rule {rule_id} is {rule.status}, nothing to do")
            return

        ip_a = store.get_peer_ip(db, rule.peer_a_id)
        if ip_a is None:
            logger.error(f"[ERROR] Error getting peer {rule.peer_a_id} IP for access rule {rule_id}")
            return
        ip_b = store.get_peer_ip(db, rule.peer_b_id)
        if ip_b is None:
            logger.error(f"[ERROR] Error getting peer {rule.peer_b_id} IP for access rule {rule_id}")
            return

        self._check(self.driver.add_filter_pair(ip_a, ip_b), f"rule {rule_id}")

        if store.transition_access_rule_status(
            db, rule_id, access_rule_sources(AccessRuleStatus.CREATED), AccessRuleStatus.CREATED
        ):
            logger.info(f"Access rule {rule_id} ({ip_a} <-> {ip_b}) created")
        elif store.get_access_rule(db, rule_id) is None:
            # Deleted while the pair was being inserted: take the pair back out
            logger.info(f"Access rule {rule_id} deleted during apply, revoking {ip_a} <-> {ip_b}")
            self._check(self.driver.remove_filter_pair(ip_a, ip_b), f"rule {rule_id}")
