"""Background service launch for ComfyUI and the AI-Toolkit UI."""

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import List, Optional

from .logging import log_info, log_success, log_warn, log_error


@dataclass
class ServiceSpec:
    """How to start a long-running service and recognise it afterwards."""
    name: str
    command: List[str]
    cwd: str
    log_path: str
    match: str             # pgrep -f pattern identifying a running instance
    port: int


def comfyui_service(comfy_dir: str, workspace: str, python: Optional[str] = None, port: int = 8188) -> ServiceSpec:
    return ServiceSpec(
        name="ComfyUI",
        command=[python or sys.executable, "main.py", "--listen", "127.0.0.1", "--port", str(port)],
        cwd=comfy_dir,
        log_path=os.path.join(workspace, "comfyui.log"),
        match="main.py --listen",
        port=port,
    )


def aitoolkit_ui_service(toolkit_dir: str, workspace: str, port: int = 8675) -> ServiceSpec:
    return ServiceSpec(
        name="AI-Toolkit UI",
        command=["npm", "run", "server"],
        cwd=toolkit_dir,
        log_path=os.path.join(workspace, "aitoolkit_ui.log"),
        match="node.*server",
        port=port,
    )


def running_pid(pattern: str) -> Optional[int]:
    """PID of the first process whose command line matches, or None."""
    if not shutil.which("pgrep"):
        return None
    try:
        result = subprocess.run(["pgrep", "-f", pattern], capture_output=True, text=True, timeout=10)
    except (subprocess.TimeoutExpired, OSError):
        return None
    pids = [int(p) for p in result.stdout.split() if p.isdigit() and int(p) != os.getpid()]
    return pids[0] if pids else None


def start_service(spec: ServiceSpec, dry_run: bool = False) -> Optional[int]:
    """Start a service detached from this process, logging to a file.

    Returns:
        PID of the started process, or None if it was already running,
        in dry-run mode, or failed to start
    """
    existing = running_pid(spec.match)
    if existing:
        log_warn(f"{spec.name} already running (PID: {existing})")
        return None

    if dry_run:
        log_info(f"[DRY RUN] Would start {spec.name}: {' '.join(spec.command)}")
        return None

    os.makedirs(os.path.dirname(spec.log_path) or ".", exist_ok=True)
    try:
        with open(spec.log_path, "ab") as log_file:
            proc = subprocess.Popen(
                spec.command,
                cwd=spec.cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                start_new_session=True,
            )
    except OSError as e:
        log_error(f"Failed to start {spec.name}: {e}")
        return None

    log_success(f"{spec.name} started (PID: {proc.pid})")
    log_info(f"Logs: tail -f {spec.log_path}")
    return proc.pid


def print_tunnel_instructions(spec: ServiceSpec) -> None:
    """Services bind to localhost; explain the SSH tunnel to reach them."""
    log_info(f"{spec.name} is bound to localhost only (not publicly exposed)")
    log_info("From your LOCAL machine, run:")
    log_info(f"  ssh -p <SSH_PORT> root@<PUBLIC_IP> -L {spec.port}:localhost:{spec.port}")
    log_info(f"Then open: http://localhost:{spec.port}")
