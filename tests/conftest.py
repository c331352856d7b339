import subprocess
from typing import Dict, Iterable, List, Optional, Tuple
from unittest.mock import patch

import pytest

from ss_libev_setup.config import InstallLayout, ServerConfig
from ss_libev_setup.host import CommandError, CommandRunner, Host
from ss_libev_setup.provision import Provisioner

SS_LISTENING = (
    'tcp   LISTEN 0  4096  0.0.0.0:8388  0.0.0.0:*  users:(("ss-server",pid=812,fd=5))\n'
    'tcp   LISTEN 0  128   0.0.0.0:22    0.0.0.0:*  users:(("sshd",pid=600,fd=3))\n'
)


class FakeRunner(CommandRunner):
    """Records commands and answers them from a table of prefixes."""

    def __init__(self, missing: Iterable[str] = ()) -> None:
        self.calls: List[List[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.missing = set(missing)
        # binaries that cannot be started at all, whatever ``check`` says
        self.unstartable = set()
        self.responses: Dict[Tuple[str, ...], Tuple[int, str]] = {}
        # a healthy Debian host without the package installed yet
        self.respond(["dpkg-query"], 1, "")
        self.respond(["systemctl", "--no-pager"], 0, "● shadowsocks-libev.service\n   Active: active (running)\n")
        self.respond(["ufw", "status"], 0, "Status: active\n\nTo    Action    From\n22/tcp    ALLOW    Anywhere\n")
        self.respond(["sysctl", "-n"], 0, "cubic\n")
        self.respond(["iptables", "-C"], 1, "")
        self.respond(["ss"], 0, SS_LISTENING)
        self.respond(["journalctl"], 0, "Started Shadowsocks-Libev Service.\n")

    def respond(self, prefix: List[str], returncode: int = 0, stdout: str = "") -> None:
        self.responses[tuple(prefix)] = (returncode, stdout)

    def _lookup(self, cmd: List[str]) -> Tuple[int, str]:
        best: Tuple[int, str] = (0, "")
        best_len = -1
        for prefix, answer in self.responses.items():
            if tuple(cmd[: len(prefix)]) == prefix and len(prefix) > best_len:
                best, best_len = answer, len(prefix)
        return best

    def run(self, cmd, check=True, env=None, timeout=None):
        self.calls.append(list(cmd))
        self.envs.append(env)
        if cmd[0] in self.unstartable:
            raise CommandError(list(cmd), 127, f"No such file or directory: '{cmd[0]}'")
        returncode, stdout = self._lookup(list(cmd))
        if returncode != 0 and check:
            raise CommandError(list(cmd), returncode, "simulated failure")
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")

    def exists(self, name: str) -> bool:
        return name not in self.missing

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == list(prefix) for call in self.calls)

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if call[: len(prefix)] == list(prefix))


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def host(runner):
    return Host(runner)


@pytest.fixture
def layout(tmp_path):
    return InstallLayout.under(tmp_path / "root")


@pytest.fixture
def make_provisioner(host, layout):
    def factory(config: Optional[ServerConfig] = None, **kwargs) -> Provisioner:
        kwargs.setdefault("settle_seconds", 0)
        kwargs.setdefault("sleep", lambda seconds: None)
        return Provisioner(config or ServerConfig(password="s3cret"), layout=layout, host=host, **kwargs)

    return factory


@pytest.fixture
def as_root():
    with patch("os.geteuid", return_value=0):
        yield


@pytest.fixture
def as_user():
    with patch("os.geteuid", return_value=1000):
        yield
