"""System, Python and Node package installation."""

import os
import re
import shutil
import subprocess
import sys
from typing import List, Optional, Sequence

import requests

from .logging import log_info, log_success, log_warn, log_error

# Only allow safe package names (alphanumeric, hyphens, dots, plus, underscores,
# and version specifiers for pip)
_SAFE_PACKAGE_RE = re.compile(r"^[a-zA-Z0-9._+\-]+([=<>!~]=?[a-zA-Z0-9.*+\-]+)?$")

COMFY_SYSTEM_PACKAGES = ["ffmpeg", "libgl1", "libglib2.0-0"]
COMFY_PYTHON_PACKAGES = ["opencv-python-headless", "accelerate", "omegaconf", "imageio-ffmpeg"]
SAGEATTENTION_PACKAGES = ["sageattention"]

NODESOURCE_SETUP_URL = "https://deb.nodesource.com/setup_18.x"

TORCH_INDEX_URL = "https://download.pytorch.org/whl/cu126"
TORCH_PACKAGES = ["torch==2.7.0", "torchvision==0.22.0", "torchaudio==2.7.0"]


def _validate(packages: Sequence[str]) -> bool:
    for pkg in packages:
        if not _SAFE_PACKAGE_RE.match(pkg):
            log_error(f"Invalid package name rejected: {pkg!r}")
            return False
    return True


def run_command(cmd: List[str], cwd: Optional[str] = None, env=None, timeout: Optional[float] = None) -> bool:
    """Run an install command, log the tail of stderr on failure."""
    try:
        result = subprocess.run(cmd, cwd=cwd, env=env, capture_output=True, text=True, timeout=timeout)
    except (subprocess.TimeoutExpired, OSError) as e:
        log_error(f"{cmd[0]} failed: {e}")
        return False
    if result.returncode != 0:
        log_error(f"{' '.join(cmd[:3])} failed (exit code {result.returncode})")
        for line in (result.stderr or "").strip().split("\n")[-3:]:
            if line:
                log_error(line)
        return False
    return True


def pip_command(python: Optional[str] = None) -> List[str]:
    """pip invocation for the interpreter the applications run under."""
    return [python or sys.executable, "-m", "pip"]


def install_system_packages(packages: Sequence[str], update_first: bool = True) -> bool:
    """Install apt packages non-interactively.

    Returns:
        True if installation succeeded
    """
    if not shutil.which("apt-get"):
        log_warn("apt-get not found, skipping system packages")
        return False
    if not _validate(packages):
        return False

    env = {**os.environ, "DEBIAN_FRONTEND": "noninteractive"}
    if update_first:
        log_info("Updating package lists...")
        run_command(["apt-get", "update", "-qq"], env=env)

    log_info(f"Installing: {' '.join(packages)}")
    return run_command(["apt-get", "install", "-y", "-qq"] + list(packages), env=env)


def pip_install(
    packages: Sequence[str],
    python: Optional[str] = None,
    index_url: Optional[str] = None,
) -> bool:
    """pip install a list of packages without populating the pip cache."""
    if not _validate(packages):
        return False
    cmd = pip_command(python) + ["install", "--no-cache-dir"] + list(packages)
    if index_url:
        cmd.extend(["--index-url", index_url])
    log_info(f"pip install {' '.join(packages)}")
    return run_command(cmd)


def pip_install_requirements(requirements: str, python: Optional[str] = None) -> bool:
    """pip install -r a requirements file if it exists."""
    if not os.path.isfile(requirements):
        log_warn(f"{requirements} not found, skipping")
        return False
    cmd = pip_command(python) + ["install", "--no-cache-dir", "-r", requirements]
    return run_command(cmd)


def install_torch(python: Optional[str] = None) -> bool:
    """Install the pinned CUDA PyTorch wheels the trainer is tested against."""
    log_info(f"Installing {', '.join(TORCH_PACKAGES)} from {TORCH_INDEX_URL}")
    return pip_install(TORCH_PACKAGES, python=python, index_url=TORCH_INDEX_URL)


def install_nodejs(timeout: int = 600) -> bool:
    """Install Node.js 18 from NodeSource unless ``node`` is already on PATH.

    Returns:
        True if Node.js is available afterwards
    """
    if shutil.which("node"):
        log_info("Node.js already installed")
        return True
    if not shutil.which("apt-get"):
        log_warn("apt-get not found, cannot install Node.js")
        return False

    log_info("Installing Node.js 18...")
    try:
        response = requests.get(NODESOURCE_SETUP_URL, timeout=60)
        response.raise_for_status()
    except requests.RequestException as e:
        log_error(f"Failed to fetch NodeSource setup script: {e}")
        return False

    try:
        result = subprocess.run(
            ["bash", "-"], input=response.text, text=True,
            capture_output=True, timeout=timeout,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        log_error(f"NodeSource setup failed: {e}")
        return False
    if result.returncode != 0:
        log_error(f"NodeSource setup exited with code {result.returncode}")
        return False

    # The setup script already refreshed the package lists
    if not install_system_packages(["nodejs"], update_first=False):
        return False
    log_success("Node.js installed")
    return True


def npm_install(cwd: str) -> bool:
    """Install Node dependencies for a web UI."""
    if not shutil.which("npm"):
        log_error("npm not found; install Node.js first")
        return False
    log_info(f"npm install in {cwd}")
    if run_command(["npm", "install"], cwd=cwd):
        log_success("Node dependencies installed")
        return True
    return False
