"""Installer for a Shadowsocks-libev server managed by systemd."""

from .config import VERSION as __version__  # noqa: F401
