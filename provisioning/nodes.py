"""ComfyUI custom node installation and repository checkout."""

import os
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .logging import log_info, log_success, log_warn
from .packages import pip_install_requirements, run_command

COMFYUI_REPO = "https://github.com/comfyanonymous/ComfyUI.git"
AITOOLKIT_REPO = "https://github.com/ostris/ai-toolkit.git"

DEFAULT_CUSTOM_NODES = [
    "https://github.com/ltdrdata/ComfyUI-Manager",
    "https://github.com/rgthree/rgthree-comfy.git",
    "https://github.com/kijai/ComfyUI-KJNodes.git",
    "https://github.com/WASasquatch/was-node-suite-comfyui.git",
    "https://github.com/chflame163/ComfyUI_LayerStyle.git",
    "https://github.com/neonvoid/comfy-inpaint-crop-fork.git",
    "https://github.com/kijai/ComfyUI-WanVideoWrapper.git",
    "https://github.com/neonvoid/NV_Comfy_Utils.git",
    "https://github.com/pythongosssss/ComfyUI-Custom-Scripts.git",
    "https://github.com/yolain/ComfyUI-Easy-Use.git",
    "https://github.com/Kosinkadink/ComfyUI-VideoHelperSuite.git",
    "https://github.com/BadCafeCode/masquerade-nodes-comfyui.git",
    "https://github.com/evanspearman/ComfyMath.git",
    "https://github.com/munkyfoot/ComfyUI-TextOverlay.git",
]


def repo_name(url: str) -> str:
    """Directory name git clone would create for ``url``."""
    name = url.rstrip("/").rsplit("/", 1)[-1]
    if name.endswith(".git"):
        name = name[:-4]
    return name


def read_node_list(path: str) -> List[str]:
    """Read repository URLs from a file, one per line; ``#`` lines are ignored."""
    with open(path) as f:
        return [line.strip() for line in f if line.strip() and not line.strip().startswith("#")]


def clone_or_update(url: str, dest: str, depth: Optional[int] = None) -> str:
    """Clone ``url`` into ``dest`` or fast-forward an existing checkout.

    Returns:
        'cloned', 'updated' or 'failed'. A pull that cannot fast-forward
        leaves the existing checkout in place and still counts as updated.
    """
    if os.path.isdir(dest):
        log_info(f"{repo_name(url)} already exists, pulling latest")
        if not run_command(["git", "-C", dest, "pull", "--ff-only"]):
            log_warn(f"Could not update {dest}, keeping existing checkout")
        return "updated"

    cmd = ["git", "clone"]
    if depth:
        cmd.extend(["--depth", str(depth)])
    cmd.extend([url, dest])
    log_info(f"Cloning {repo_name(url)}")
    if run_command(cmd):
        return "cloned"
    return "failed"


def install_custom_nodes(
    urls: Iterable[str],
    custom_nodes_dir: str,
    python: Optional[str] = None,
    dry_run: bool = False,
) -> Dict[str, int]:
    """Install each custom node repo with its Python requirements.

    A node that fails to clone is skipped; failures in its requirements or
    ``install.py`` are counted but the node is kept.

    Returns:
        Dict with counts: {"cloned": N, "updated": N, "failed": N}
    """
    results: Dict[str, int] = {"cloned": 0, "updated": 0, "failed": 0}
    Path(custom_nodes_dir).mkdir(parents=True, exist_ok=True)

    for url in urls:
        url = url.strip()
        if not url or url.startswith("#"):
            continue

        name = repo_name(url)
        dest = os.path.join(custom_nodes_dir, name)
        if dry_run:
            log_info(f"[DRY RUN] Would install {name} into {dest}")
            continue

        status = clone_or_update(url, dest)
        if status == "failed":
            log_warn(f"Failed to clone {name}")
            results["failed"] += 1
            continue
        results[status] += 1

        requirements = os.path.join(dest, "requirements.txt")
        if os.path.isfile(requirements):
            log_info(f"Installing dependencies for {name}")
            if not pip_install_requirements(requirements, python=python):
                results["failed"] += 1

        if os.path.isfile(os.path.join(dest, "install.py")):
            log_info(f"Running install.py for {name}")
            if not run_command([python or sys.executable, "install.py"], cwd=dest):
                results["failed"] += 1

    log_success(
        f"Custom nodes: {results['cloned']} cloned, {results['updated']} updated, "
        f"{results['failed']} failures"
    )
    return results


def installed_nodes(custom_nodes_dir: str) -> List[str]:
    """Names of directories under custom_nodes."""
    if not os.path.isdir(custom_nodes_dir):
        return []
    return sorted(
        entry for entry in os.listdir(custom_nodes_dir)
        if os.path.isdir(os.path.join(custom_nodes_dir, entry)) and not entry.startswith(("_", "."))
    )
