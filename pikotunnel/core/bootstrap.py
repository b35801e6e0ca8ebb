# pikotunnel/core/bootstrap.py
"""
Bootstrap Recovery
Rebuilds live state after interface bring-up and requeues unfinished work
"""

import logging
from typing import Callable, List

from sqlalchemy.orm import Session

from pikotunnel.database import store
from pikotunnel.database.models import PeerStatus, AccessRuleStatus
from .job_queue import Job, JobQueue
from .lifecycle import needs_recovery_access_rule, needs_recovery_peer
from .wireguard_service import NetworkDriver

logger = logging.getLogger(__name__)


class BootstrapRecovery:
    """
    Startup reconciliation

    The interface and chain come up empty, so everything already marked
    created has to be re-applied; everything still pending or deleting gets
    a fresh job. Store errors propagate: starting with a half-read store
    would silently drop peers.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        driver: NetworkDriver,
        queue: JobQueue
    ):
        self.session_factory = session_factory
        self.driver = driver
        self.queue = queue

    def restore_live_state(self) -> None:
        """Replay created peers and created rules onto the fresh interface"""
        db = self.session_factory()
        try:
            peers = store.list_peers_by_status(db, PeerStatus.CREATED)
            for peer in peers:
                result = self.driver.add_tunnel_peer(peer.public_key, peer.ip)
                if not result.ok:
                    logger.error(f"[ERROR] Failed to restore peer {peer.id}: {result.diagnostic}")
            logger.info(f"[DONE] Restored {len(peers)} wireguard peer(s)")

            rules = store.list_access_rules_by_status(db, AccessRuleStatus.CREATED)
            for rule in rules:
                ip_a = store.get_peer_ip(db, rule.peer_a_id)
                ip_b = store.get_peer_ip(db, rule.peer_b_id)
                if ip_a is None or ip_b is None:
                    logger.error(f"[ERROR] Access rule {rule.id} references a missing peer, not restored")
                    continue
                result = self.driver.add_filter_pair(ip_a, ip_b)
                if not result.ok:
                    logger.error(f"[ERROR] Failed to restore access rule {rule.id}: {result.diagnostic}")
            logger.info(f"[DONE] Restored {len(rules)} access rule(s)")
        finally:
            db.close()

    def requeue_unfinished(self) -> List[Job]:
        """
        Enqueue every peer, then every rule, whose last transition never completed

        Blocks if the queue fills up, so the worker must already be running.
        """
        db = self.session_factory()
        try:
            jobs = [
                Job.peer(p.id)
                for p in store.list_peers(db)
                if needs_recovery_peer(p.status)
            ]
            jobs += [
                Job.access_rule(r.id)
                for r in store.list_access_rules(db)
                if needs_recovery_access_rule(r.status)
            ]
        finally:
            db.close()

        for job in jobs:
            self.queue.put(job)
        logger.info(f"[DONE] Requeued {len(jobs)} unfinished job(s)")
        return jobs

    def run(self) -> List[Job]:
        self.restore_live_state()
        return self.requeue_unfinished()
