# pikotunnel/core/wireguard_service.py
"""
WireGuard / iptables driver for the relay
Applies peer entries and per-pair filter rules to the live system
"""

import os
import subprocess
import tempfile
import threading
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command"""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def diagnostic(self) -> str:
        detail = self.stderr.strip() or self.stdout.strip() or "no output"
        return f"`{' '.join(self.args)}` exited with {self.returncode}: {detail}"


@dataclass
class OperationResult:
    """Outcome of a driver operation made of one or more commands"""
    operation: str
    results: List[CommandResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failures(self) -> List[CommandResult]:
        return [r for r in self.results if not r.ok]

    @property
    def diagnostic(self) -> str:
        return "; ".join(r.diagnostic for r in self.failures)


class CommandRunner:
    """
    Runs external programs and captures their output

    Failures come back as a CommandResult with a non-zero returncode;
    a missing binary or a timeout never raises.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def run(self, args: Sequence[str], input_text: Optional[str] = None) -> CommandResult:
        args = list(args)
        logger.debug(f"Running: {' '.join(args)}")
        try:
            proc = subprocess.run(
                args,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError as e:
            return CommandResult(args, 127, stderr=str(e))
        except subprocess.TimeoutExpired:
            return CommandResult(args, -1, stderr=f"timed out after {self.timeout}s")
        return CommandResult(args, proc.returncode, proc.stdout.strip(), proc.stderr.strip())


class NetworkDriver:
    """
    Manages the relay's WireGuard interface and filter chain

    Responsibilities:
    - Add/remove tunnel peers
    - Add/remove the ACCEPT rule pair between two peers
    - Bring the interface and chain up from scratch

    Commands are serialized: the worker and the synchronous rule deletion
    both touch the chain, and wg/iptables do not tolerate concurrent writers.
    """

    def __init__(
        self,
        interface: str = "wg0",
        chain: str = "WG_RULES",
        runner: Optional[CommandRunner] = None
    ):
        self.interface = interface
        self.chain = chain
        self.runner = runner or CommandRunner()
        self._lock = threading.RLock()

    def _run(self, *args: str, input_text: Optional[str] = None) -> CommandResult:
        with self._lock:
            return self.runner.run(list(args), input_text=input_text)

    # === Tunnel peers ===

    def add_tunnel_peer(self, public_key: str, ip: str) -> OperationResult:
        """Register ip/32 as the allowed address for public_key"""
        result = OperationResult("add_tunnel_peer")
        result.results.append(self._run(
            "wg", "set", self.interface,
            "peer", public_key,
            "allowed-ips", f"{ip}/32"
        ))
        if result.ok:
            logger.info(f"Added peer: {public_key[:20]}... -> {ip}/32")
        return result

    def remove_tunnel_peer(self, public_key: str) -> OperationResult:
        result = OperationResult("remove_tunnel_peer")
        result.results.append(self._run(
            "wg", "set", self.interface,
            "peer", public_key,
            "remove"
        ))
        if result.ok:
            logger.info(f"Removed peer: {public_key[:20]}...")
        return result

    def list_tunnel_peers(self) -> list:
        """Get list of current peers from `wg show <if> dump`"""
        result = self._run("wg", "show", self.interface, "dump")
        if not result.ok:
            logger.error(f"Failed to get peers: {result.diagnostic}")
            return []

        peers = []
        for line in result.stdout.split('\n')[1:]:  # Skip interface line
            parts = line.split('\t')
            if len(parts) >= 4:
                peers.append({
                    'public_key': parts[0],
                    'endpoint': parts[2] if parts[2] != '(none)' else None,
                    'allowed_ips': parts[3],
                    'latest_handshake': parts[4] if len(parts) > 4 else None,
                })
        return peers

    def is_interface_up(self) -> bool:
        return self._run("wg", "show", self.interface).ok

    # === Filter rules ===

    def _accept_spec(self, src_ip: str, dst_ip: str) -> List[str]:
        return [
            "-s", src_ip, "-d", dst_ip,
            "-i", self.interface, "-o", self.interface,
            "-j", "ACCEPT"
        ]

    def _rule_exists(self, src_ip: str, dst_ip: str) -> bool:
        return self._run("iptables", "-C", self.chain, *self._accept_spec(src_ip, dst_ip)).ok

    def add_filter_pair(self, ip_a: str, ip_b: str) -> OperationResult:
        """
        Allow traffic A->B and B->A

        Rules go to position 1, ahead of the default DROP. A direction already
        present is left alone, so replays do not stack duplicates.
        """
        result = OperationResult("add_filter_pair")
        with self._lock:
            for src_ip, dst_ip in ((ip_a, ip_b), (ip_b, ip_a)):
                if self._rule_exists(src_ip, dst_ip):
                    continue
                result.results.append(self._run(
                    "iptables", "-I", self.chain, "1", *self._accept_spec(src_ip, dst_ip)
                ))
        if result.ok:
            logger.info(f"Allowed traffic {ip_a} <-> {ip_b}")
        return result

    def remove_filter_pair(self, ip_a: str, ip_b: str) -> OperationResult:
        """Delete both directions; a missing rule is not an error"""
        result = OperationResult("remove_filter_pair")
        with self._lock:
            for src_ip, dst_ip in ((ip_a, ip_b), (ip_b, ip_a)):
                if not self._rule_exists(src_ip, dst_ip):
                    continue
                result.results.append(self._run(
                    "iptables", "-D", self.chain, *self._accept_spec(src_ip, dst_ip)
                ))
        if result.ok:
            logger.info(f"Revoked traffic {ip_a} <-> {ip_b}")
        return result

    # === Bring-up ===

    def _install_private_key(self, private_key: str, listen_port: int) -> CommandResult:
        # wg only reads the key from a file
        fd, path = tempfile.mkstemp(prefix="wg_private_key")
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(private_key)
            return self._run(
                "wg", "set", self.interface,
                "private-key", path,
                "listen-port", str(listen_port)
            )
        finally:
            os.unlink(path)

    def initialize_interface(self, address: str, private_key: str, listen_port: int) -> OperationResult:
        """
        Reset the interface and chain to an empty, default-deny state

        Args:
            address: Relay address with prefix (e.g. "10.8.0.1/24")
            private_key: Relay private key (Base64)
            listen_port: UDP port WireGuard listens on

        Every step runs even if an earlier one failed; the caller decides
        what to do with the failures.
        """
        result = OperationResult("initialize_interface")
        record = result.results.append
        iface = self.interface

        with self._lock:
            logger.info("[STARTING] Initial setup")

            record(self._run("iptables", "-F", self.chain))
            logger.info("[DONE] Flushed iptables chain")

            # Missing interface on first boot is expected
            self._run("ip", "link", "set", "down", iface)
            self._run("ip", "link", "delete", iface)
            logger.info(f"[DONE] Deleted {iface} interface")

            record(self._run("sysctl", "-w", "net.ipv4.ip_forward=1"))
            record(self._run("sysctl", "-w", "net.ipv4.conf.all.proxy_arp=1"))
            logger.info("[DONE] Setup ip forwarding")

            record(self._run("ip", "link", "add", iface, "type", "wireguard"))
            record(self._run("ip", "addr", "add", address, "dev", iface))
            record(self._run("ip", "link", "set", "up", iface))
            logger.info(f"[DONE] Setup {iface} interface")

            record(self._install_private_key(private_key, listen_port))
            logger.info(f"[DONE] Added private key to {iface} interface")

            # -N fails when the chain survived the flush above; that is fine
            self._run("iptables", "-N", self.chain)
            hook = ["FORWARD", "-i", iface, "-o", iface, "-j", self.chain]
            if not self._run("iptables", "-C", *hook).ok:
                record(self._run("iptables", "-I", *hook))
            record(self._run("iptables", "-A", self.chain, "-i", iface, "-o", iface, "-j", "DROP"))
            logger.info("[DONE] Setup iptables chain")

        logger.info("[DONE] Initial setup")
        return result
