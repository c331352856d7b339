"""
File helpers: timestamped backups with a retention limit, and
replace-on-write for managed files.
"""

import logging
import os
import re
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from .console import LOGGER_NAME

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

logger = logging.getLogger(LOGGER_NAME)


def _backup_sort_key(path: Path, original: Path) -> Tuple[str, int]:
    # "<name>.bak.<timestamp>" or "<name>.bak.<timestamp>-<n>" on collisions
    suffix = path.name[len(original.name) + len(".bak."):]
    match = re.fullmatch(r"(\d{8}-\d{6})(?:-(\d+))?", suffix)
    if not match:
        return suffix, 0
    return match.group(1), int(match.group(2) or 0)


def list_backups(path: Path) -> List[Path]:
    """Return backups of ``path``, oldest first."""
    path = Path(path)
    if not path.parent.is_dir():
        return []
    pattern = re.compile(re.escape(path.name) + r"\.bak\.\d{8}-\d{6}(-\d+)?$")
    backups = [p for p in path.parent.iterdir() if pattern.match(p.name)]
    return sorted(backups, key=lambda p: _backup_sort_key(p, path))


def prune_backups(path: Path, keep: int) -> List[Path]:
    """Delete all but the newest ``keep`` backups of ``path``. ``keep=0`` keeps all."""
    if keep <= 0:
        return []
    removed = []
    for old in list_backups(path)[:-keep]:
        old.unlink()
        logger.debug(f"Removed old backup {old}")
        removed.append(old)
    return removed


def backup_file(path: Path, keep: int = 0) -> Optional[Path]:
    """
    Copy ``path`` to ``<path>.bak.<timestamp>`` if it exists.

    Returns the backup path, or None when there was nothing to back up.
    """
    path = Path(path)
    if not path.is_file():
        return None
    timestamp = datetime.now().strftime(BACKUP_TIMESTAMP_FORMAT)
    # same-second backups take a counter above any existing one
    taken = [
        counter
        for stamp, counter in (_backup_sort_key(p, path) for p in list_backups(path))
        if stamp == timestamp
    ]
    name = f"{path.name}.bak.{timestamp}"
    if taken or path.with_name(name).exists():
        name = f"{name}-{max(taken, default=0) + 1}"
    backup_path = path.with_name(name)
    # created owner-only; copystat then applies the source's own mode
    fd = os.open(backup_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as dst, open(path, "rb") as src:
        shutil.copyfileobj(src, dst)
    shutil.copystat(path, backup_path)
    logger.info(f"Backed up {path} to {backup_path}")
    prune_backups(path, keep)
    return backup_path


def ensure_dir(path: Path, mode: int) -> None:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, mode)


def write_file(path: Path, content: str, mode: int) -> None:
    """
    Write ``content`` to ``path`` with permissions ``mode``.

    The data goes to a temporary file in the same directory which gets its
    final mode before being renamed over the target.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    logger.debug(f"Wrote {path} (mode {mode:o})")
