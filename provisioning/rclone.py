"""rclone installation, B2 remote configuration and command building."""

import configparser
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import requests

from .config import ProvisionConfig
from .logging import log_info, log_success, log_warn, log_error

RCLONE_INSTALL_URL = "https://rclone.org/install.sh"
DEFAULT_CONFIG_PATH = Path("~/.config/rclone/rclone.conf")


@dataclass
class SyncFlags:
    """Performance flags passed to every ``rclone copy``.

    Attributes:
        transfers: Files transferred in parallel
        checkers: Parallel equality checkers
        multi_thread_streams: Streams used for a single large file
        multi_thread_cutoff: Size above which multi-thread streaming starts
        buffer_size: In-memory read-ahead buffer per transfer
        fast_list: Use recursive listing (fewer API calls on B2)
        ignore_existing: Skip files already present at the destination
    """
    transfers: int = 16
    checkers: int = 32
    multi_thread_streams: int = 8
    multi_thread_cutoff: str = "100M"
    buffer_size: str = "64M"
    fast_list: bool = True
    ignore_existing: bool = True

    def to_args(self) -> List[str]:
        args = [
            "--transfers", str(self.transfers),
            "--checkers", str(self.checkers),
            "--multi-thread-streams", str(self.multi_thread_streams),
            "--multi-thread-cutoff", self.multi_thread_cutoff,
            "--buffer-size", self.buffer_size,
        ]
        if self.fast_list:
            args.append("--fast-list")
        if self.ignore_existing:
            args.append("--ignore-existing")
        return args


def build_copy_command(
    source: str,
    dest: str,
    flags: Optional[SyncFlags] = None,
    excludes: Sequence[str] = (),
    rclone_bin: str = "rclone",
) -> List[str]:
    """Build the argv for one ``rclone copy``.

    Args:
        source: rclone source (``remote:bucket/prefix`` or a local path)
        dest: rclone destination
        flags: Performance flags (defaults to ``SyncFlags()``)
        excludes: ``--exclude`` patterns
        rclone_bin: rclone executable

    Returns:
        Command list suitable for subprocess
    """
    cmd = [rclone_bin, "copy", source, dest]
    cmd.extend((flags or SyncFlags()).to_args())
    for pattern in excludes:
        cmd.extend(["--exclude", pattern])
    return cmd


def rclone_version(rclone_bin: str = "rclone") -> Optional[str]:
    """First line of ``rclone version``, or None if rclone is unusable."""
    if not shutil.which(rclone_bin):
        return None
    try:
        result = subprocess.run(
            [rclone_bin, "version"], capture_output=True, text=True, timeout=30,
        )
    except (subprocess.TimeoutExpired, OSError):
        return None
    if result.returncode != 0 or not result.stdout:
        return None
    return result.stdout.splitlines()[0].strip()


def install_rclone(dry_run: bool = False, timeout: int = 600) -> bool:
    """Install rclone with the official install script unless already present.

    Returns:
        True if rclone is available afterwards
    """
    version = rclone_version()
    if version:
        log_info(f"rclone already installed: {version}")
        return True

    if dry_run:
        log_info(f"[DRY RUN] Would install rclone from {RCLONE_INSTALL_URL}")
        return True

    log_info("Installing rclone...")
    try:
        response = requests.get(RCLONE_INSTALL_URL, timeout=60)
        response.raise_for_status()
    except requests.RequestException as e:
        log_error(f"Failed to fetch rclone installer: {e}")
        return False

    try:
        result = subprocess.run(
            ["bash"], input=response.text, text=True,
            capture_output=True, timeout=timeout,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        log_error(f"rclone installer failed: {e}")
        return False

    # The installer exits 3 when the latest version is already installed
    if result.returncode not in (0, 3):
        log_error(f"rclone installer exited with code {result.returncode}")
        for line in result.stderr.strip().split("\n")[-3:]:
            if line:
                log_error(line)
        return False

    version = rclone_version()
    if not version:
        log_error("rclone still not found on PATH after install")
        return False
    log_success(f"rclone installed: {version}")
    return True


def write_rclone_config(
    config: ProvisionConfig,
    path: Optional[Path] = None,
) -> Optional[Path]:
    """Write the B2 remote section of rclone.conf non-interactively.

    Other remotes already present in the file are preserved.

    Returns:
        Path written, or None when no application key is configured
    """
    if not config.key:
        log_warn("Skipping rclone config (B2_APP_KEY not set)")
        return None

    conf_path = Path(os.path.expanduser(str(path or DEFAULT_CONFIG_PATH)))
    conf_path.parent.mkdir(parents=True, exist_ok=True)

    parser = configparser.ConfigParser(interpolation=None)
    if conf_path.exists():
        parser.read(conf_path)

    parser[config.remote_name] = {
        "type": "b2",
        "account": config.key_id or "",
        "key": config.key,
        "hard_delete": "true",
    }
    with open(conf_path, "w") as f:
        parser.write(f)
    os.chmod(conf_path, 0o600)

    log_success(f"rclone remote '{config.remote_name}' configured in {conf_path}")
    return conf_path


def list_remote(remote_path: str, rclone_bin: str = "rclone", timeout: int = 120) -> Optional[List[str]]:
    """List files under a remote path (``rclone ls``).

    Returns:
        Output lines (``size path``), or None if listing failed
    """
    try:
        result = subprocess.run(
            [rclone_bin, "ls", remote_path],
            capture_output=True, text=True, timeout=timeout,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        log_warn(f"Could not list {remote_path}: {e}")
        return None
    if result.returncode != 0:
        return None
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]
