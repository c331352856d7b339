"""
Configuration & Constants
-------------------------

Fixed names and paths for the Shadowsocks-libev installation, the typed
server configuration rendered to ``config.json``, and the layout of the files
the installer manages.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

# ----------------------------------------------------------------
# Application
# ----------------------------------------------------------------
APP_NAME = "Shadowsocks Setup"
APP_SUBTITLE = "Shadowsocks-libev Server Installer"
VERSION = "1.0.0"

# ----------------------------------------------------------------
# Package, Service & Paths
# ----------------------------------------------------------------
PACKAGE_NAME = "shadowsocks-libev"
SERVICE_NAME = "shadowsocks-libev.service"
SERVER_BINARY = "/usr/bin/ss-server"
SERVER_PROCESS = "ss-server"

CONF_DIR = "/etc/shadowsocks-libev"
CONF_FILE = f"{CONF_DIR}/config.json"
WRAPPER_PATH = "/usr/local/bin/shadowsocks-libev-wrapper"
UNIT_PATH = "/etc/systemd/system/shadowsocks-libev.service"
LOG_FILE = "/var/log/ss_libev_setup.log"

CONF_DIR_MODE = 0o755
CONF_FILE_MODE = 0o600
WRAPPER_MODE = 0o755
UNIT_MODE = 0o644

# ----------------------------------------------------------------
# Defaults (environment overrides allowed)
# ----------------------------------------------------------------
DEFAULT_PORT = 8388
DEFAULT_PASSWORD = "655524"
DEFAULT_METHOD = "aes-256-gcm"
DEFAULT_MODE = "tcp_and_udp"
DEFAULT_TIMEOUT = 60
DEFAULT_BACKUP_KEEP = 5
SETTLE_SECONDS = 1.0
STATUS_LINES = 40
JOURNAL_LINES = 30

LISTEN_ADDRESSES = ["0.0.0.0"]
LOCAL_PORT = 1080

# Ciphers accepted by ss-server (AEAD first, legacy stream ciphers after).
METHODS = [
    "aes-128-gcm",
    "aes-192-gcm",
    "aes-256-gcm",
    "chacha20-ietf-poly1305",
    "xchacha20-ietf-poly1305",
    "rc4-md5",
    "aes-128-cfb",
    "aes-192-cfb",
    "aes-256-cfb",
    "aes-128-ctr",
    "aes-192-ctr",
    "aes-256-ctr",
    "camellia-128-cfb",
    "camellia-192-cfb",
    "camellia-256-cfb",
    "bf-cfb",
    "salsa20",
    "chacha20",
    "chacha20-ietf",
]
MODES = ["tcp_only", "udp_only", "tcp_and_udp"]

# Kernel tuning applied by the network tuner.
CONGESTION_CONTROL_KEY = "net.ipv4.tcp_congestion_control"
TCP_TUNING = {
    "net.core.default_qdisc": "fq",
    CONGESTION_CONTROL_KEY: "bbr",
}


class ConfigError(ValueError):
    """Raised when a server configuration value is out of range."""


def read_config_document(path: Path) -> Dict[str, Any]:
    """Read an installed config.json as a plain dict, keeping unknown keys."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigError(f"{path} is not UTF-8 text: {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} does not contain a JSON object")
    return data


# ----------------------------------------------------------------
# Data Structures
# ----------------------------------------------------------------
@dataclass
class ServerConfig:
    """
    Parameters rendered into the ss-server JSON configuration.

    Attributes:
        port: TCP/UDP port the server listens on.
        password: Pre-shared secret.
        method: Cipher name, one of METHODS.
        mode: Transport mode, one of MODES.
        timeout: Idle timeout in seconds.
    """

    port: int = DEFAULT_PORT
    password: str = DEFAULT_PASSWORD
    method: str = DEFAULT_METHOD
    mode: str = DEFAULT_MODE
    timeout: int = DEFAULT_TIMEOUT

    def validate(self) -> "ServerConfig":
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigError(f"Port must be an integer, got {self.port!r}")
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"Port {self.port} is outside 1-65535")
        if not isinstance(self.password, str) or not self.password:
            raise ConfigError("Password must be a non-empty string")
        if self.method not in METHODS:
            raise ConfigError(f"Unsupported cipher method: {self.method}")
        if self.mode not in MODES:
            raise ConfigError(
                f"Unsupported mode: {self.mode} (expected one of {', '.join(MODES)})"
            )
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, int):
            raise ConfigError(f"Timeout must be an integer, got {self.timeout!r}")
        if self.timeout <= 0:
            raise ConfigError(f"Timeout must be positive, got {self.timeout}")
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Return the document in the key order ss-server examples use."""
        return {
            "server": list(LISTEN_ADDRESSES),
            "mode": self.mode,
            "server_port": self.port,
            "local_port": LOCAL_PORT,
            "password": self.password,
            "timeout": self.timeout,
            "fast_open": True,
            "reuse_port": True,
            "no_delay": True,
            "method": self.method,
        }

    def to_json(self) -> str:
        self.validate()
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServerConfig":
        try:
            config = cls(
                port=data["server_port"],
                password=data["password"],
                method=data["method"],
                mode=data.get("mode", DEFAULT_MODE),
                timeout=data.get("timeout", DEFAULT_TIMEOUT),
            )
        except KeyError as e:
            raise ConfigError(f"Config is missing required field {e}") from e
        return config.validate()

    @classmethod
    def load(cls, path: Path) -> "ServerConfig":
        return cls.from_dict(read_config_document(path))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        env = os.environ if environ is None else environ

        def as_int(name: str, default: int) -> int:
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError as e:
                raise ConfigError(f"{name} must be an integer, got {raw!r}") from e

        return cls(
            port=as_int("PORT", DEFAULT_PORT),
            password=env.get("PASS") or DEFAULT_PASSWORD,
            method=env.get("METHOD") or DEFAULT_METHOD,
            mode=env.get("MODE") or DEFAULT_MODE,
            timeout=as_int("TIMEOUT", DEFAULT_TIMEOUT),
        ).validate()


@dataclass
class InstallLayout:
    """Paths of every artifact the installer writes."""

    conf_dir: Path = Path(CONF_DIR)
    conf_file: Path = Path(CONF_FILE)
    wrapper: Path = Path(WRAPPER_PATH)
    unit: Path = Path(UNIT_PATH)
    server_binary: str = SERVER_BINARY
    service: str = SERVICE_NAME

    @classmethod
    def under(cls, root: Path) -> "InstallLayout":
        """Re-root every path below ``root``."""
        root = Path(root)
        conf_dir = root / CONF_DIR.lstrip("/")
        return cls(
            conf_dir=conf_dir,
            conf_file=conf_dir / Path(CONF_FILE).name,
            wrapper=root / WRAPPER_PATH.lstrip("/"),
            unit=root / UNIT_PATH.lstrip("/"),
        )
