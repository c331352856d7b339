"""
Host Interfaces
---------------

Thin wrappers around the external tools the installer drives: apt, systemd,
ufw, iptables, sysctl, ss and journalctl. Each wrapper only knows how to build
the right command line and how to read that tool's text or exit status; all
of them share a single CommandRunner so tests can substitute a fake one.
"""

import logging
import os
import re
import shutil
import subprocess
from typing import Dict, List, Optional

from .console import LOGGER_NAME

OPERATION_TIMEOUT = 600  # seconds

logger = logging.getLogger(LOGGER_NAME)


class CommandError(RuntimeError):
    """An external command exited nonzero or could not be started."""

    def __init__(self, cmd: List[str], returncode: int, stderr: str = "") -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(
            f"Command '{' '.join(cmd)}' failed with exit code {returncode}{detail}"
        )


# ----------------------------------------------------------------
# Command Execution Helper
# ----------------------------------------------------------------
class CommandRunner:
    def run(
        self,
        cmd: List[str],
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = OPERATION_TIMEOUT,
    ) -> subprocess.CompletedProcess:
        """Run a command, capturing its output as text."""
        logger.debug(f"Running command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                env=env,
                check=False,
                text=True,
                capture_output=True,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise CommandError(cmd, 127, str(e)) from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(cmd, -1, f"timed out after {timeout} seconds") from e
        if result.returncode != 0:
            logger.debug(f"Exit code {result.returncode}: {(result.stderr or '').strip()}")
            if check:
                raise CommandError(cmd, result.returncode, result.stderr or "")
        return result

    def exists(self, name: str) -> bool:
        return shutil.which(name) is not None


# ----------------------------------------------------------------
# Package Manager
# ----------------------------------------------------------------
class AptPackages:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    @staticmethod
    def _env() -> Dict[str, str]:
        env = os.environ.copy()
        env["DEBIAN_FRONTEND"] = "noninteractive"
        return env

    def is_installed(self, package: str) -> bool:
        result = self.runner.run(
            ["dpkg-query", "-W", "-f=${Status}", package], check=False
        )
        return result.returncode == 0 and "install ok installed" in (result.stdout or "")

    def update(self) -> None:
        self.runner.run(["apt-get", "update", "-y"], env=self._env())

    def install(self, package: str) -> None:
        self.runner.run(["apt-get", "install", "-y", package], env=self._env())


# ----------------------------------------------------------------
# Service Manager
# ----------------------------------------------------------------
class Systemd:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def daemon_reload(self) -> None:
        self.runner.run(["systemctl", "daemon-reload"])

    def enable_now(self, unit: str) -> None:
        self.runner.run(["systemctl", "enable", "--now", unit])

    def restart(self, unit: str) -> None:
        self.runner.run(["systemctl", "restart", unit])

    def is_active(self, unit: str) -> bool:
        result = self.runner.run(["systemctl", "is-active", "--quiet", unit], check=False)
        return result.returncode == 0

    def status(self, unit: str) -> str:
        result = self.runner.run(
            ["systemctl", "--no-pager", "--full", "status", unit], check=False
        )
        return result.stdout or ""


class Journal:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def tail(self, unit: str, lines: int) -> str:
        result = self.runner.run(
            ["journalctl", "-u", unit, "-n", str(lines), "--no-pager"], check=False
        )
        return result.stdout or ""


# ----------------------------------------------------------------
# Firewall
# ----------------------------------------------------------------
class Ufw:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def available(self) -> bool:
        return self.runner.exists("ufw")

    def status(self) -> str:
        return self.runner.run(["ufw", "status"]).stdout or ""

    @staticmethod
    def rule_present(status: str, port: int, proto: str) -> bool:
        """Return True if ``ufw status`` text already lists ``port/proto``."""
        pattern = rf"(?<![\d/]){port}/{proto}\b"
        return re.search(pattern, status) is not None

    def allow(self, port: int, proto: str) -> None:
        self.runner.run(["ufw", "allow", f"{port}/{proto}"])


class Iptables:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def available(self) -> bool:
        return self.runner.exists("iptables")

    @staticmethod
    def _rule(port: int, proto: str) -> List[str]:
        return ["INPUT", "-p", proto, "--dport", str(port), "-j", "ACCEPT"]

    def has_accept(self, port: int, proto: str) -> bool:
        result = self.runner.run(["iptables", "-C"] + self._rule(port, proto), check=False)
        return result.returncode == 0

    def insert_accept(self, port: int, proto: str) -> None:
        self.runner.run(["iptables", "-I"] + self._rule(port, proto))


# ----------------------------------------------------------------
# Kernel Parameters
# ----------------------------------------------------------------
class Sysctl:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def read(self, key: str) -> Optional[str]:
        if not self.runner.exists("sysctl"):
            return None
        result = self.runner.run(["sysctl", "-n", key], check=False)
        if result.returncode != 0:
            return None
        return (result.stdout or "").strip()

    def write(self, key: str, value: str) -> None:
        self.runner.run(["sysctl", "-w", f"{key}={value}"])


# ----------------------------------------------------------------
# Sockets
# ----------------------------------------------------------------
class SocketTable:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def listening(self, port: int, process: str) -> List[str]:
        """Return ``ss`` lines for TCP and UDP listeners on ``port`` or owned by ``process``."""
        pattern = re.compile(rf"(:{port}\s)|{re.escape(process)}")
        lines: List[str] = []
        for flags in ("-ltnup", "-lunup"):
            result = self.runner.run(["ss", flags], check=False)
            lines.extend(
                line for line in (result.stdout or "").splitlines() if pattern.search(line)
            )
        return lines


class Host:
    """Every external collaborator, wired to one CommandRunner."""

    def __init__(self, runner: Optional[CommandRunner] = None) -> None:
        self.runner = runner or CommandRunner()
        self.packages = AptPackages(self.runner)
        self.services = Systemd(self.runner)
        self.journal = Journal(self.runner)
        self.firewall = Ufw(self.runner)
        self.iptables = Iptables(self.runner)
        self.kernel = Sysctl(self.runner)
        self.sockets = SocketTable(self.runner)
