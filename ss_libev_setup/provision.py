"""
Provisioning Steps
------------------

Each public method of Provisioner is one step of the Shadowsocks-libev
installation. Steps talk to the machine only through a Host, so they can be
driven against a fake runner and a temporary directory.

Fatal steps raise; optional steps raise StageSkipped when their tool is not
available. build_pipeline() arranges the steps in installation order.
"""

import json
import logging
import os
import shlex
import sys
import time
from typing import Callable, List, Optional

from .config import (
    CONF_DIR_MODE,
    CONF_FILE_MODE,
    CONGESTION_CONTROL_KEY,
    DEFAULT_BACKUP_KEEP,
    JOURNAL_LINES,
    PACKAGE_NAME,
    SERVER_PROCESS,
    SETTLE_SECONDS,
    STATUS_LINES,
    TCP_TUNING,
    UNIT_MODE,
    WRAPPER_MODE,
    InstallLayout,
    ServerConfig,
    read_config_document,
)
from .console import LOGGER_NAME, print_error, print_output, print_success, print_warning
from .files import backup_file, ensure_dir, write_file
from .host import CommandError, Host
from .pipeline import Pipeline, StageSkipped

PROTOCOLS = ("tcp", "udp")

WRAPPER_TEMPLATE = """\
#!/usr/bin/env bash
set -euo pipefail
exec {binary} -c {config}
"""

UNIT_TEMPLATE = """\
[Unit]
Description=Shadowsocks-Libev Service
After=network-online.target
Wants=network-online.target

[Service]
ExecStart={wrapper}
Restart=on-failure
KillMode=mixed
KillSignal=SIGTERM
TimeoutStopSec=5

[Install]
WantedBy=multi-user.target
"""

logger = logging.getLogger(LOGGER_NAME)


class ActivationError(RuntimeError):
    """The service did not report active after being started."""


def require_root() -> None:
    """Exit with status 1 unless running as root."""
    if os.geteuid() != 0:
        print_error("Run as root (use sudo).")
        sys.exit(1)


def render_wrapper(layout: InstallLayout) -> str:
    return WRAPPER_TEMPLATE.format(
        binary=shlex.quote(layout.server_binary),
        config=shlex.quote(str(layout.conf_file)),
    )


def render_unit(layout: InstallLayout) -> str:
    return UNIT_TEMPLATE.format(wrapper=layout.wrapper)


class Provisioner:
    def __init__(
        self,
        config: ServerConfig,
        layout: Optional[InstallLayout] = None,
        host: Optional[Host] = None,
        backup_keep: int = DEFAULT_BACKUP_KEEP,
        settle_seconds: float = SETTLE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config.validate()
        self.layout = layout or InstallLayout()
        self.host = host or Host()
        self.backup_keep = backup_keep
        self.settle_seconds = settle_seconds
        self.sleep = sleep

    # ------------------------------------------------------------
    # Fatal steps
    # ------------------------------------------------------------
    def install_package(self) -> str:
        packages = self.host.packages
        if packages.is_installed(PACKAGE_NAME):
            print_success(f"{PACKAGE_NAME} is already installed")
            return "already installed"
        packages.update()
        packages.install(PACKAGE_NAME)
        print_success("Packages installed")
        return "installed"

    def _replace_file(self, path, content: str, mode: int) -> str:
        backup = backup_file(path, keep=self.backup_keep)
        if backup is not None:
            print_success(f"Backup created: {backup}")
        write_file(path, content, mode)
        return f"backup {backup.name}" if backup is not None else "new file"

    def write_config(self) -> str:
        ensure_dir(self.layout.conf_dir, CONF_DIR_MODE)
        detail = self._replace_file(
            self.layout.conf_file, self.config.to_json(), CONF_FILE_MODE
        )
        print_success(f"Config written to {self.layout.conf_file}")
        return detail

    def write_wrapper(self) -> str:
        detail = self._replace_file(
            self.layout.wrapper, render_wrapper(self.layout), WRAPPER_MODE
        )
        print_success(f"Wrapper ready at {self.layout.wrapper}")
        return detail

    def write_unit(self) -> str:
        detail = self._replace_file(self.layout.unit, render_unit(self.layout), UNIT_MODE)
        print_success(f"Unit written to {self.layout.unit}")
        return detail

    def verify_active(self) -> None:
        self.sleep(self.settle_seconds)
        if not self.host.services.is_active(self.layout.service):
            raise ActivationError(f"{self.layout.service} failed to start")

    def activate_service(self) -> str:
        services = self.host.services
        services.daemon_reload()
        services.enable_now(self.layout.service)
        self.verify_active()
        print_success("Service started")
        return "active"

    # ------------------------------------------------------------
    # Best-effort steps
    # ------------------------------------------------------------
    def configure_firewall(self) -> str:
        ufw = self.host.firewall
        if not ufw.available():
            raise StageSkipped("UFW not installed, skipping firewall rules")
        status = ufw.status()
        port = self.config.port
        failed: List[str] = []
        for proto in PROTOCOLS:
            if ufw.rule_present(status, port, proto):
                logger.debug(f"UFW already allows {port}/{proto}")
                continue
            try:
                ufw.allow(port, proto)
            except CommandError as e:
                logger.warning(f"Could not allow {port}/{proto}: {e}")
                failed.append(f"{port}/{proto}")
        if failed:
            raise RuntimeError(f"could not add UFW rules for {', '.join(failed)}")
        print_success(f"UFW rules ensured for {port}/tcp and {port}/udp")
        return f"{port}/tcp, {port}/udp"

    def tune_network(self) -> str:
        kernel = self.host.kernel
        current = kernel.read(CONGESTION_CONTROL_KEY)
        if current is None:
            raise StageSkipped("Kernel exposes no TCP congestion control setting")
        logger.debug(f"Current congestion control: {current}")
        failed: List[str] = []
        for key, value in TCP_TUNING.items():
            try:
                kernel.write(key, value)
            except CommandError as e:
                logger.warning(f"Could not set {key}={value}: {e}")
                failed.append(key)
        if failed:
            raise RuntimeError(f"could not set {', '.join(failed)}")
        print_success("TCP tuning applied (bbr/fq)")
        return ", ".join(f"{k}={v}" for k, v in TCP_TUNING.items())

    def reinforce(self) -> str:
        """
        Re-apply the port rules in both ufw and iptables, then restart the
        service so it binds with the final firewall state in place.
        """
        port = self.config.port
        problems: List[str] = []
        if self.host.firewall.available():
            for proto in PROTOCOLS:
                try:
                    self.host.firewall.allow(port, proto)
                except CommandError as e:
                    problems.append(str(e))
        iptables = self.host.iptables
        if iptables.available():
            for proto in PROTOCOLS:
                try:
                    if not iptables.has_accept(port, proto):
                        iptables.insert_accept(port, proto)
                except CommandError as e:
                    problems.append(str(e))
        else:
            logger.debug("iptables not found, skipping INPUT rules")
        try:
            self.host.services.restart(self.layout.service)
        except CommandError as e:
            problems.append(str(e))
        if problems:
            raise RuntimeError("; ".join(problems))
        return "rules re-applied, service restarted"

    def report_status(self) -> None:
        """Print service status, listening sockets and recent logs."""
        service = self.layout.service
        try:
            status = self.host.services.status(service).splitlines()[:STATUS_LINES]
            print_output("systemctl status", status)
        except CommandError as e:
            print_warning(f"Could not read service status: {e}")
        try:
            sockets = self.host.sockets.listening(self.config.port, SERVER_PROCESS)
            if not sockets:
                print_warning(f"No listening sockets found on port {self.config.port}")
            print_output(f"listening sockets ({SERVER_PROCESS})", sockets)
        except CommandError as e:
            print_warning(f"Could not list listening sockets: {e}")
        try:
            journal = self.host.journal.tail(service, JOURNAL_LINES).splitlines()
            print_output("recent logs", journal)
        except CommandError as e:
            print_warning(f"Could not read recent logs: {e}")

    # ------------------------------------------------------------
    # Password rotation
    # ------------------------------------------------------------
    def change_password(self, password: str) -> str:
        """
        Replace only the password in the installed config; any other keys
        in the file (plugin options, custom server lists) are kept as is.
        """
        document = read_config_document(self.layout.conf_file)
        document["password"] = password
        self.config = ServerConfig.from_dict(document)
        detail = self._replace_file(
            self.layout.conf_file,
            json.dumps(document, indent=2, ensure_ascii=False) + "\n",
            CONF_FILE_MODE,
        )
        self.host.services.restart(self.layout.service)
        self.verify_active()
        print_success("Password changed and service restarted")
        return detail


def build_pipeline(provisioner: Provisioner, reinforce: bool = True) -> Pipeline:
    pipeline = Pipeline()
    pipeline.add("package", f"Installing packages ({PACKAGE_NAME})", provisioner.install_package)
    pipeline.add("config", "Writing config", provisioner.write_config)
    pipeline.add("wrapper", "Creating wrapper", provisioner.write_wrapper)
    pipeline.add("unit", "Installing systemd unit", provisioner.write_unit)
    pipeline.add("service", "Reloading systemd and starting service", provisioner.activate_service)
    pipeline.add(
        "firewall", "Configuring UFW rules (if not present)",
        provisioner.configure_firewall, best_effort=True,
    )
    pipeline.add(
        "tuning", "Applying optional TCP tuning (bbr/fq)",
        provisioner.tune_network, best_effort=True,
    )
    if reinforce:
        pipeline.add(
            "reinforce", "Re-applying port rules and restarting service",
            provisioner.reinforce, best_effort=True,
        )
    pipeline.add("status", "Final checks", provisioner.report_status, best_effort=True)
    return pipeline
