"""Cloud environment detection for GPU instances."""

import os
import socket
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass
class CloudEnvironment:
    """Detected cloud environment information."""
    provider: str          # 'vastai', 'modal', 'generic'
    work_dir: str          # Best working directory
    has_persistent_storage: bool


def detect_cloud_environment(environ: Optional[Mapping[str, str]] = None) -> CloudEnvironment:
    """Detect which cloud GPU provider we're running on.

    Detection logic:
    - Modal: MODAL_TASK_ID env var (containers mount volumes under /root)
    - Vast.ai: VAST_CONTAINERLABEL env var or /workspace directory exists
    - Generic: fallback
    """
    env = os.environ if environ is None else environ

    if env.get("MODAL_TASK_ID"):
        return CloudEnvironment(
            provider="modal",
            work_dir="/root",
            has_persistent_storage=False,
        )

    if env.get("VAST_CONTAINERLABEL") or os.path.isdir("/workspace"):
        return CloudEnvironment(
            provider="vastai",
            work_dir="/workspace",
            has_persistent_storage=True,
        )

    return CloudEnvironment(
        provider="generic",
        work_dir=os.getcwd(),
        has_persistent_storage=False,
    )


def work_dir_for_provider(provider: str) -> str:
    """Return the default working directory for a given provider name."""
    dirs = {
        "vastai": "/workspace",
        "modal": "/root",
        "generic": os.getcwd(),
    }
    return dirs.get(provider, os.getcwd())


def instance_hostname() -> str:
    """Hostname used to keep outputs from several instances apart."""
    return socket.gethostname()
