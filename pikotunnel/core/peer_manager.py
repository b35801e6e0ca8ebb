# pikotunnel/core/peer_manager.py
"""
Peer Manager - Handles peer creation and deletion requests
"""

import threading
import uuid
from typing import Callable, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from pikotunnel.database import store
from pikotunnel.database.models import Peer, PeerStatus
from .errors import NotFoundError
from .ipam import IPAMService
from .job_queue import Job, JobQueue
from .keys import generate_keypair
from .lifecycle import is_delete_requestable, peer_sources

logger = logging.getLogger(__name__)

# Retries when a concurrent writer outside this process grabbed the same address
_INSERT_ATTEMPTS = 3


class PeerManager:
    """
    Peer Manager for handling peer requests from the API

    Responsibilities:
    1. Allocate an address and keypair for new peers
    2. Record peers as pending and hand them to the worker
    3. Mark peers for deletion

    Nothing here touches the network; the worker does.
    """

    def __init__(
        self,
        ipam: IPAMService,
        queue: JobQueue,
        keygen: Callable[[], Tuple[str, str]] = generate_keypair
    ):
        self.ipam = ipam
        self.queue = queue
        self.keygen = keygen
        # Allocation reads the used set and inserts; two creates must not interleave
        self._allocation_lock = threading.Lock()

    def create_peer(self, db: Session) -> Peer:
        """
        Create a new pending peer

        Returns:
            The persisted peer, private key included

        Raises:
            SubnetExhaustedError: If no address is free
        """
        private_key, public_key = self.keygen()

        with self._allocation_lock:
            for attempt in range(1, _INSERT_ATTEMPTS + 1):
                peer = Peer(
                    id=str(uuid.uuid4()),
                    ip=self.ipam.allocate(store.used_ips(db)),
                    private_key=private_key,
                    public_key=public_key,
                    status=PeerStatus.PENDING.value,
                )
                try:
                    store.add_peer(db, peer)
                    break
                except IntegrityError:
                    if attempt == _INSERT_ATTEMPTS:
                        raise
                    logger.warning(f"Address {peer.ip} taken concurrently, retrying allocation")

        logger.info(f"New peer registered: {peer.id} -> {peer.ip}")
        self.queue.put(Job.peer(peer.id))
        return peer

    def get_peer(self, db: Session, peer_id: str) -> Optional[Peer]:
        return store.get_peer(db, peer_id)

    def require_peer(self, db: Session, peer_id: str) -> Peer:
        peer = store.get_peer(db, peer_id)
        if peer is None:
            raise NotFoundError(f"Peer {peer_id} not found")
        return peer

    def list_peers(self, db: Session) -> List[Peer]:
        return store.list_peers(db)

    def get_peer_status(self, db: Session, peer_id: str) -> str:
        return self.require_peer(db, peer_id).status

    def request_delete(self, db: Session, peer_id: str) -> bool:
        """
        Mark a peer for deletion; the record stays until the worker is done

        Returns:
            True if a deletion was started, False for the no-op cases
            (unknown peer, already deleting)
        """
        peer = store.get_peer(db, peer_id)
        if peer is None:
            logger.debug(f"Delete requested for unknown peer {peer_id}")
            return False
        if not is_delete_requestable(peer.status):
            logger.debug(f"Peer {peer_id} already {peer.status}")
            return False

        if not store.transition_peer_status(db, peer_id, peer_sources(PeerStatus.DELETING), PeerStatus.DELETING):
            # Another request won the race
            return False

        logger.info(f"Peer {peer_id} ({peer.ip}) marked for deletion")
        self.queue.put(Job.peer(peer_id))
        return True
