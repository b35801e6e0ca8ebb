# pikotunnel/core/ipam.py
"""
IP Address Management (IPAM) Service
Picks tunnel addresses for new peers inside the relay subnet
"""

import ipaddress
import random
from typing import Iterable, Optional, Set
import logging

from .errors import SubnetExhaustedError

logger = logging.getLogger(__name__)


class IPAMService:
    """
    IPAM Service for the relay subnet

    Features:
    - Random allocation across the whole subnet
    - Reserved IPs (network, relay, broadcast)
    - Bounded retries, then a full pool sweep before giving up
    """

    def __init__(
        self,
        network_cidr: str,
        relay_address: str,
        max_attempts: int = 1024,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize IPAM with network CIDR

        Args:
            network_cidr: Subnet in CIDR notation; host bits are ignored ("10.8.0.1/24" works)
            relay_address: The relay's own address, never handed out
            max_attempts: Random draws before falling back to a sweep
            rng: Random source, injectable for deterministic tests
        """
        self.network = ipaddress.IPv4Network(network_cidr, strict=False)
        self.network_cidr = str(self.network)
        self.relay_address = relay_address
        self.max_attempts = max_attempts
        self._rng = rng or random.SystemRandom()

        # Reserved IPs that cannot be allocated
        self._reserved_ips = {
            str(self.network.network_address),
            str(self.network.broadcast_address),
            relay_address,
        }

        logger.info(f"IPAM initialized with network {self.network_cidr}")

    @property
    def host_bits(self) -> int:
        return self.network.max_prefixlen - self.network.prefixlen

    @property
    def total_hosts(self) -> int:
        """Allocatable host addresses (network, broadcast and relay excluded)"""
        hosts = (1 << self.host_bits) - 2
        if self.contains(self.relay_address):
            hosts -= 1
        return max(hosts, 0)

    def is_reserved(self, ip: str) -> bool:
        return ip in self._reserved_ips

    def contains(self, ip: str) -> bool:
        """Check if ip is a valid address inside the subnet"""
        try:
            return ipaddress.IPv4Address(ip) in self.network
        except ipaddress.AddressValueError:
            return False

    def _address_at(self, offset: int) -> str:
        return str(self.network.network_address + offset)

    def allocate(self, used: Iterable[str]) -> str:
        """
        Allocate a free address

        Args:
            used: Addresses already held by peers

        Returns:
            IP address without prefix (e.g. "10.8.0.17")

        Raises:
            SubnetExhaustedError: If every host address is taken
        """
        taken: Set[str] = set(used) | self._reserved_ips
        last_offset = (1 << self.host_bits) - 2

        if last_offset < 1:
            raise SubnetExhaustedError(f"Subnet {self.network_cidr} has no host addresses")

        for _ in range(self.max_attempts):
            candidate = self._address_at(self._rng.randint(1, last_offset))
            if candidate not in taken:
                logger.debug(f"Allocated IP {candidate}")
                return candidate

        # Random draws keep missing: the pool is nearly full, scan it in order
        for offset in range(1, last_offset + 1):
            candidate = self._address_at(offset)
            if candidate not in taken:
                logger.info(f"Allocated IP {candidate} after pool sweep")
                return candidate

        logger.error(f"IP pool {self.network_cidr} exhausted!")
        raise SubnetExhaustedError(f"Subnet {self.network_cidr} exhausted. No available addresses.")

    def get_allocation_stats(self, used: Iterable[str]) -> dict:
        """
        Get IP allocation statistics

        Returns:
            Dictionary with allocation stats
        """
        used_count = len(set(used) - self._reserved_ips)

        return {
            "network": self.network_cidr,
            "relay": self.relay_address,
            "total_hosts": self.total_hosts,
            "used": used_count,
            "available": self.total_hosts - used_count,
            "utilization_percent": round((used_count / self.total_hosts) * 100, 2) if self.total_hosts > 0 else 0
        }
