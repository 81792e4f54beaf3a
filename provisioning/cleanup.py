"""Disk cleanup for long-lived instances that accumulate outputs."""

import os
import shutil
import time
from typing import Dict, Iterable, Optional

from .logging import log_info, log_warn


def free_mb(path: str) -> int:
    """Free space in MiB on the filesystem holding ``path``."""
    return shutil.disk_usage(path).free // (1024 * 1024)


def remove_old_files(
    dirs: Iterable[str],
    max_age_hours: float = 24,
    now: Optional[float] = None,
) -> Dict[str, int]:
    """Delete files older than ``max_age_hours`` and prune emptied directories.

    The directories passed in are never removed themselves.

    Returns:
        Dict with counts: {"files": N, "dirs": N, "bytes": N}
    """
    cutoff = (now if now is not None else time.time()) - max_age_hours * 3600
    removed = {"files": 0, "dirs": 0, "bytes": 0}

    for root_dir in dirs:
        if not os.path.isdir(root_dir):
            continue
        for current, subdirs, files in os.walk(root_dir, topdown=False):
            for name in files:
                path = os.path.join(current, name)
                try:
                    st = os.lstat(path)
                    if st.st_mtime < cutoff:
                        os.remove(path)
                        removed["files"] += 1
                        removed["bytes"] += st.st_size
                except OSError as e:
                    log_warn(f"Could not remove {path}: {e}")
            if current != root_dir and not os.listdir(current):
                try:
                    os.rmdir(current)
                    removed["dirs"] += 1
                except OSError as e:
                    log_warn(f"Could not remove {current}: {e}")

    return removed


def cleanup_if_low_disk(
    workspace: str,
    dirs: Iterable[str],
    min_free_mb: int = 512,
    max_age_hours: float = 24,
) -> Optional[Dict[str, int]]:
    """Run ``remove_old_files`` only when free space is below ``min_free_mb``.

    Returns:
        Removal counts, or None if there was enough space
    """
    available = free_mb(workspace)
    if available >= min_free_mb:
        log_info(f"Disk OK: {available}MB free under {workspace}")
        return None

    log_warn(f"Low disk space ({available}MB), cleaning old outputs...")
    removed = remove_old_files(dirs, max_age_hours=max_age_hours)
    log_info(f"Removed {removed['files']} files ({removed['bytes'] / 1e6:.1f} MB), "
             f"{removed['dirs']} empty directories")
    return removed
