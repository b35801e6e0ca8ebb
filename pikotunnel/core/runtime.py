# pikotunnel/core/runtime.py
"""
Relay runtime
Owns the queue, driver, worker and managers for one process
"""

import random
import logging
from typing import Optional

from sqlalchemy.engine import Engine

from pikotunnel.config import Settings
from pikotunnel.database import store
from pikotunnel.database.session import (
    DatabaseManager,
    create_db_engine,
    create_session_factory,
    init_db,
)
from .access_rule_manager import AccessRuleManager
from .bootstrap import BootstrapRecovery
from .ipam import IPAMService
from .job_queue import JobQueue
from .peer_manager import PeerManager
from .wireguard_service import CommandRunner, NetworkDriver
from .worker import ConvergenceWorker

logger = logging.getLogger(__name__)


class RelayRuntime:
    """
    Wires the reconciliation engine together

    Startup order matters: the interface is reset, live state restored from
    the store, the worker started, and only then unfinished jobs requeued
    (the bounded queue would otherwise block startup).
    """

    def __init__(
        self,
        settings: Settings,
        db_engine: Optional[Engine] = None,
        driver: Optional[NetworkDriver] = None,
        rng: Optional[random.Random] = None
    ):
        self.settings = settings
        self.db_engine = db_engine or create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)
        self.session_factory = create_session_factory(self.db_engine)
        self.db_manager = DatabaseManager(self.db_engine)

        self.driver = driver or NetworkDriver(
            interface=settings.WIREGUARD_INTERFACE,
            chain=settings.FILTER_CHAIN,
            runner=CommandRunner(timeout=settings.COMMAND_TIMEOUT),
        )
        self.queue = JobQueue(maxsize=settings.JOB_QUEUE_SIZE)
        self.ipam = IPAMService(
            settings.WIREGUARD_SUBNET,
            settings.relay_address,
            max_attempts=settings.IP_ALLOCATION_MAX_ATTEMPTS,
            rng=rng,
        )

        self.peer_manager = PeerManager(self.ipam, self.queue)
        self.access_rule_manager = AccessRuleManager(self.driver, self.queue)
        self.worker = ConvergenceWorker(self.session_factory, self.driver, self.queue)
        self.bootstrap = BootstrapRecovery(self.session_factory, self.driver, self.queue)

    def allocation_stats(self) -> dict:
        """Address usage of the tunnel subnet"""
        db = self.session_factory()
        try:
            return self.ipam.get_allocation_stats(store.used_ips(db))
        finally:
            db.close()

    def bring_up_interface(self) -> bool:
        """Reset the tunnel interface and chain; failures are logged, not raised"""
        result = self.driver.initialize_interface(
            self.settings.WIREGUARD_SUBNET,
            self.settings.WIREGUARD_PRIVATE_KEY,
            self.settings.WIREGUARD_LISTEN_PORT,
        )
        for failure in result.failures:
            logger.error(f"[ERROR] Initial setup step failed: {failure.diagnostic}")
        return result.ok

    def start(self, bring_up: bool = True, run_worker: bool = True) -> None:
        """
        Args:
            bring_up: Reset the interface first (False skips all network setup)
            run_worker: Start the worker thread; tests pass False and call worker.drain()
        """
        init_db(self.db_engine)
        if bring_up:
            self.bring_up_interface()
        self.bootstrap.restore_live_state()
        if run_worker:
            self.worker.start()
        self.bootstrap.requeue_unfinished()
        logger.info("Relay runtime started")

    def stop(self, timeout: Optional[float] = 30.0) -> None:
        self.worker.stop(timeout)
        logger.info("Relay runtime stopped")
