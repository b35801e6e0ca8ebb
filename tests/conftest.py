"""
Shared pytest fixtures for the relay tests.

Fixture Organization
--------------------
- **fake_system**: in-memory stand-in for wg/ip/iptables/sysctl, used as the
  driver's command runner so the real NetworkDriver code runs unchanged
- **db_engine / session_factory / db**: file-backed SQLite in tmp_path with the schema created
- **settings**: relay settings isolated from the environment and .env
- **runtime**: RelayRuntime wired to the fake system, worker not started;
  tests call ``runtime.worker.drain()`` to converge deterministically
- **client**: FastAPI TestClient over the same runtime (lifespan not run)
"""

import random
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest
from fastapi.testclient import TestClient

from pikotunnel.config import Settings
from pikotunnel.core.keys import generate_keypair
from pikotunnel.core.runtime import RelayRuntime
from pikotunnel.core.wireguard_service import CommandResult, NetworkDriver
from pikotunnel.database.session import create_db_engine, create_session_factory, init_db
from pikotunnel.main import create_app

API_TOKEN = "test-token"


class FakeSystem:
    """
    Command runner that models a WireGuard interface and iptables chains

    Attributes:
        calls: every argv received, in order
        peers: public key -> allowed-ips
        chains: chain name -> list of rule specs (tuples), index 0 is the head
        fail: argv prefixes (tuples) that should exit non-zero
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.peers: Dict[str, str] = {}
        self.chains: Dict[str, List[Tuple[str, ...]]] = {}
        self.fail: Set[Tuple[str, ...]] = set()
        self.private_key_contents: Optional[str] = None
        self.hooks = []

    def run(self, args: Sequence[str], input_text: Optional[str] = None) -> CommandResult:
        args = list(args)
        self.calls.append(args)
        self.inputs.append(input_text)
        for hook in list(self.hooks):
            hook(args)

        for prefix in self.fail:
            if tuple(args[:len(prefix)]) == prefix:
                return CommandResult(args, 1, stderr=f"simulated failure: {' '.join(args)}")

        if args[0] == "wg":
            return self._wg(args)
        if args[0] == "iptables":
            return self._iptables(args)
        return CommandResult(args, 0)

    def _wg(self, args: List[str]) -> CommandResult:
        if args[1] == "show":
            if len(args) > 3 and args[3] == "dump":
                lines = ["privkey\tpubkey\t51820\toff"]
                lines += [f"{key}\t(none)\t(none)\t{ips}\t0\t0\t0\toff" for key, ips in self.peers.items()]
                return CommandResult(args, 0, stdout="\n".join(lines))
            return CommandResult(args, 0)
        if args[1] == "set" and args[3] == "peer":
            key = args[4]
            if args[5] == "remove":
                self.peers.pop(key, None)
            else:
                self.peers[key] = args[6]
            return CommandResult(args, 0)
        if args[1] == "set" and args[3] == "private-key":
            with open(args[4]) as fh:
                self.private_key_contents = fh.read()
            return CommandResult(args, 0)
        return CommandResult(args, 0)

    def _iptables(self, args: List[str]) -> CommandResult:
        flag, chain = args[1], args[2]
        rules = self.chains.setdefault(chain, [])
        if flag == "-N":
            return CommandResult(args, 0)
        if flag == "-F":
            rules.clear()
            return CommandResult(args, 0)
        if flag == "-C":
            return CommandResult(args, 0 if tuple(args[3:]) in rules else 1, stderr="Bad rule")
        if flag == "-I":
            if len(args) > 3 and args[3].isdigit():
                rules.insert(int(args[3]) - 1, tuple(args[4:]))
            else:
                rules.insert(0, tuple(args[3:]))
            return CommandResult(args, 0)
        if flag == "-A":
            rules.append(tuple(args[3:]))
            return CommandResult(args, 0)
        if flag == "-D":
            spec = tuple(args[3:])
            if spec in rules:
                rules.remove(spec)
                return CommandResult(args, 0)
            return CommandResult(args, 1, stderr="Bad rule (does a matching rule exist in that chain?)")
        return CommandResult(args, 0)

    # === Helpers for assertions ===

    def accept_rules(self, chain: str = "WG_RULES") -> List[Tuple[str, str]]:
        """(src, dst) of every ACCEPT rule in the chain, duplicates kept"""
        return [
            (spec[1], spec[3])
            for spec in self.chains.get(chain, [])
            if spec[-1] == "ACCEPT"
        ]

    def count_calls(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if tuple(call[:len(prefix)]) == prefix)


@pytest.fixture
def fake_system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def driver(fake_system: FakeSystem) -> NetworkDriver:
    return NetworkDriver(interface="wg0", chain="WG_RULES", runner=fake_system)


@pytest.fixture
def relay_keypair() -> Tuple[str, str]:
    return generate_keypair()


@pytest.fixture
def settings(relay_keypair) -> Settings:
    private_key, _ = relay_keypair
    return Settings(
        _env_file=None,
        API_TOKEN=API_TOKEN,
        DATABASE_URL="sqlite://",
        WIREGUARD_SUBNET="10.8.0.1/24",
        WIREGUARD_PRIVATE_KEY=private_key,
        WIREGUARD_PUBLIC_KEY="",
        WIREGUARD_RELAY_SERVER_PUBLIC_IP="203.0.113.10",
        WIREGUARD_LISTEN_PORT=51820,
        JOB_QUEUE_SIZE=64,
    )


@pytest.fixture
def db_engine(tmp_path):
    # File-backed so the worker thread and request threads get their own connections
    engine = create_db_engine(f"sqlite:///{tmp_path / 'relay.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def runtime(settings, db_engine, driver) -> RelayRuntime:
    """Runtime over the fake system; bootstrap ran, worker thread not started"""
    rt = RelayRuntime(settings, db_engine=db_engine, driver=driver, rng=random.Random(1234))
    rt.start(bring_up=False, run_worker=False)
    return rt


@pytest.fixture
def client(runtime) -> TestClient:
    app = create_app(runtime, bring_up=False)
    return TestClient(app, headers={"Authorization": API_TOKEN})
