"""
Command-line entry point.

Usage:
  sudo PORT=30001 PASS='MyStrongPass' METHOD=aes-256-gcm ss-libev-setup install
  sudo ss-libev-setup status
  sudo ss-libev-setup set-password 'NewPass'
"""

import signal
import sys
from typing import Any, Optional

import click

from .config import (
    DEFAULT_BACKUP_KEEP,
    DEFAULT_METHOD,
    DEFAULT_MODE,
    DEFAULT_PASSWORD,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    LOG_FILE,
    METHODS,
    MODES,
    SETTLE_SECONDS,
    VERSION,
    ConfigError,
    InstallLayout,
    ServerConfig,
)
from .console import (
    NordColors,
    console,
    create_header,
    print_error,
    print_success,
    print_warning,
    results_table,
    setup_logger,
)
from .host import CommandError, Host
from .pipeline import succeeded, summary_rows
from .provision import ActivationError, Provisioner, build_pipeline, require_root


# ----------------------------------------------------------------
# Signal Handling
# ----------------------------------------------------------------
def signal_handler(sig: int, frame: Any) -> None:
    sig_name = signal.Signals(sig).name
    print_warning(f"Process interrupted by {sig_name}.")
    sys.exit(128 + sig)


def _layout(ctx: click.Context) -> InstallLayout:
    return ctx.obj.get("layout") or InstallLayout()


def _host(ctx: click.Context) -> Host:
    return ctx.obj.get("host") or Host()


def _installed_config(layout: InstallLayout) -> ServerConfig:
    if layout.conf_file.is_file():
        return ServerConfig.load(layout.conf_file)
    return ServerConfig.from_env()


def _non_empty(ctx: click.Context, param: click.Parameter, value: str) -> str:
    if not value:
        raise click.BadParameter("must not be empty")
    return value


log_options = [
    click.option("--log-file", default=LOG_FILE, show_default=True, help="Log file path"),
    click.option("--debug", is_flag=True, help="Echo debug logging to the terminal"),
]


def with_log_options(func):
    for option in reversed(log_options):
        func = option(func)
    return func


# ----------------------------------------------------------------
# Commands
# ----------------------------------------------------------------
@click.group()
@click.version_option(version=VERSION)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Install and manage a Shadowsocks-libev server."""
    ctx.ensure_object(dict)


@cli.command()
@click.option("--port", envvar="PORT", type=click.IntRange(1, 65535),
              default=DEFAULT_PORT, show_default=True, help="Server port [env: PORT]")
@click.option("--password", envvar="PASS", default=DEFAULT_PASSWORD, callback=_non_empty,
              help="Pre-shared secret [env: PASS]")
@click.option("--method", envvar="METHOD", type=click.Choice(METHODS),
              default=DEFAULT_METHOD, show_default=True, help="Cipher [env: METHOD]")
@click.option("--mode", envvar="MODE", type=click.Choice(MODES),
              default=DEFAULT_MODE, show_default=True, help="Transport mode [env: MODE]")
@click.option("--timeout", envvar="TIMEOUT", type=click.IntRange(min=1),
              default=DEFAULT_TIMEOUT, show_default=True,
              help="Idle timeout in seconds [env: TIMEOUT]")
@click.option("--backup-keep", envvar="BACKUP_KEEP", type=click.IntRange(min=0),
              default=DEFAULT_BACKUP_KEEP, show_default=True,
              help="Backups kept per file, 0 keeps all [env: BACKUP_KEEP]")
@click.option("--reinforce/--no-reinforce", default=True, show_default=True,
              help="Re-apply ufw/iptables rules and restart the service before the final report")
@click.option("--settle-seconds", type=click.FloatRange(min=0), default=SETTLE_SECONDS,
              show_default=True, help="Wait before checking the service is active")
@click.option("--no-banner", is_flag=True, help="Skip the ASCII art header")
@with_log_options
@click.pass_context
def install(
    ctx: click.Context,
    port: int,
    password: str,
    method: str,
    mode: str,
    timeout: int,
    backup_keep: int,
    reinforce: bool,
    settle_seconds: float,
    no_banner: bool,
    log_file: Optional[str],
    debug: bool,
) -> None:
    """Install, configure and start the Shadowsocks-libev server."""
    require_root()
    logger = setup_logger(log_file, debug)
    console.print(create_header(no_banner))
    if password == DEFAULT_PASSWORD:
        print_warning("Using the default password; set PASS or --password")

    config = ServerConfig(port=port, password=password, method=method, mode=mode, timeout=timeout)
    provisioner = Provisioner(
        config,
        layout=_layout(ctx),
        host=_host(ctx),
        backup_keep=backup_keep,
        settle_seconds=settle_seconds,
    )
    logger.info(f"Starting Shadowsocks-libev installation (port={port}, method={method}, mode={mode})")
    results = build_pipeline(provisioner, reinforce=reinforce).run()
    console.print(results_table(summary_rows(results)))

    if not succeeded(results):
        logger.error("Installation aborted")
        sys.exit(1)
    print_success(f"Done. Port={port}, Method={method}, Mode={mode}")
    console.print(
        f"[{NordColors.FROST_3}]Tip: change the password with: "
        f"ss-libev-setup set-password NEWPASS[/]",
        highlight=False,
    )


@cli.command()
@with_log_options
@click.pass_context
def status(ctx: click.Context, log_file: Optional[str], debug: bool) -> None:
    """Show service status, listening sockets and recent logs."""
    require_root()
    setup_logger(log_file, debug)
    layout = _layout(ctx)
    try:
        config = _installed_config(layout)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)
    try:
        Provisioner(config, layout=layout, host=_host(ctx)).report_status()
    except CommandError as e:
        print_error(str(e))
        sys.exit(1)


@cli.command("set-password")
@click.argument("new_password")
@click.option("--backup-keep", envvar="BACKUP_KEEP", type=click.IntRange(min=0),
              default=DEFAULT_BACKUP_KEEP, show_default=True)
@click.option("--settle-seconds", type=click.FloatRange(min=0), default=SETTLE_SECONDS,
              show_default=True)
@with_log_options
@click.pass_context
def set_password(
    ctx: click.Context,
    new_password: str,
    backup_keep: int,
    settle_seconds: float,
    log_file: Optional[str],
    debug: bool,
) -> None:
    """Replace the password in the installed config and restart the service."""
    require_root()
    logger = setup_logger(log_file, debug)
    layout = _layout(ctx)
    if not layout.conf_file.is_file():
        print_error(f"{layout.conf_file} not found; run 'install' first")
        sys.exit(1)
    try:
        config = ServerConfig.load(layout.conf_file)
        provisioner = Provisioner(
            config,
            layout=layout,
            host=_host(ctx),
            backup_keep=backup_keep,
            settle_seconds=settle_seconds,
        )
        provisioner.change_password(new_password)
    except (ConfigError, CommandError, ActivationError) as e:
        logger.error(f"Password change failed: {e}")
        print_error(str(e))
        sys.exit(1)


def main() -> None:
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    cli(prog_name="ss-libev-setup")


if __name__ == "__main__":
    main()
