"""
Core reconciliation modules
"""

from .errors import RelayError, ValidationError, NotFoundError, SubnetExhaustedError
from .ipam import IPAMService
from .job_queue import Job, JobKind, JobQueue
from .wireguard_service import CommandRunner, CommandResult, NetworkDriver, OperationResult
from .worker import ConvergenceWorker
from .bootstrap import BootstrapRecovery
from .peer_manager import PeerManager
from .access_rule_manager import AccessRuleManager
from .runtime import RelayRuntime

__all__ = [
    # Errors
    "RelayError",
    "ValidationError",
    "NotFoundError",
    "SubnetExhaustedError",
    # IPAM
    "IPAMService",
    # Queue
    "Job",
    "JobKind",
    "JobQueue",
    # Network driver
    "CommandRunner",
    "CommandResult",
    "NetworkDriver",
    "OperationResult",
    # Reconciliation
    "ConvergenceWorker",
    "BootstrapRecovery",
    "PeerManager",
    "AccessRuleManager",
    "RelayRuntime",
]
