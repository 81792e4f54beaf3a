#!/usr/bin/env python3
"""gpu-provision unified CLI.

Provisions a GPU instance for ComfyUI or AI-Toolkit and keeps its models,
datasets and outputs in step with a Backblaze B2 bucket.

Usage:
    gpu-provision info                    # Show config and environment
    gpu-provision setup-rclone            # Install rclone, configure B2 remote
    gpu-provision sync comfyui            # Parallel B2 -> instance sync
    gpu-provision push-outputs aitoolkit  # Upload outputs under <hostname>/
    gpu-provision nodes                   # Install ComfyUI custom nodes
    gpu-provision provision aitoolkit     # Full instance setup
    gpu-provision start comfyui           # Start the UI in the background
    gpu-provision train config/lora.yml   # Run an AI-Toolkit training job
    gpu-provision cleanup                 # Remove old outputs when disk is low

Configuration comes from the environment (B2_BUCKET, B2_APP_KEY_ID,
B2_APP_KEY, B2_<KIND>_PATH, WORKSPACE, HF_TOKEN, SYNC_TIMEOUT).
"""

import argparse
import os
import subprocess
import sys
import time
from typing import List, Optional

from .cleanup import cleanup_if_low_disk
from .config import PROFILES, ConfigError, ProvisionConfig
from .environment import detect_cloud_environment, instance_hostname
from .logging import log_info, log_success, log_warn, log_error, log_step, log_banner, format_elapsed
from .nodes import (
    AITOOLKIT_REPO, COMFYUI_REPO, DEFAULT_CUSTOM_NODES,
    clone_or_update, install_custom_nodes, installed_nodes, read_node_list,
)
from .packages import (
    COMFY_PYTHON_PACKAGES, COMFY_SYSTEM_PACKAGES, SAGEATTENTION_PACKAGES,
    install_nodejs, install_system_packages, install_torch, npm_install, pip_install,
    pip_install_requirements,
)
from .plans import aitoolkit_dir, comfyui_dir, download_tasks, output_task
from .rclone import SyncFlags, install_rclone, list_remote, rclone_version, write_rclone_config
from .s3 import preflight
from .services import (
    ServiceSpec, aitoolkit_ui_service, comfyui_service, print_tunnel_instructions, start_service,
)
from .sync import BatchReport, SyncOrchestrator, SyncTask, log_report

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2


def _load_config(args: argparse.Namespace) -> ProvisionConfig:
    config = ProvisionConfig.from_env(profile=getattr(args, "profile", None) or "comfyui")
    if getattr(args, "workspace", None):
        config.workspace = args.workspace
    return config


def _sync_flags(args: argparse.Namespace) -> SyncFlags:
    flags = SyncFlags()
    if getattr(args, "transfers", None):
        flags.transfers = args.transfers
    if getattr(args, "checkers", None):
        flags.checkers = args.checkers
    return flags


def _orchestrator(args: argparse.Namespace, config: ProvisionConfig) -> SyncOrchestrator:
    timeout = getattr(args, "timeout", None)
    if timeout is None:
        timeout = config.sync_timeout
    elif timeout <= 0:
        timeout = None
    return SyncOrchestrator(
        flags=_sync_flags(args),
        timeout=timeout,
        dry_run=getattr(args, "dry_run", False),
        show_progress=not getattr(args, "no_progress", False),
    )


def _sync_exit(report: BatchReport, strict: bool) -> int:
    """Partial sync failure is only an error status when ``--strict`` is set."""
    if report.ok or not strict:
        return EXIT_OK
    return EXIT_PARTIAL


# =============================================================================
# Info subcommand
# =============================================================================

def cmd_info(args: argparse.Namespace) -> int:
    """Show detected environment, effective configuration and tools."""
    log_step("Environment")
    env = detect_cloud_environment()
    log_info(f"Provider:   {env.provider}")
    log_info(f"Work dir:   {env.work_dir}")
    log_info(f"Persistent: {env.has_persistent_storage}")
    log_info(f"Hostname:   {instance_hostname()}")

    log_step("Configuration")
    config = _load_config(args)
    for key, value in config.redacted().items():
        log_info(f"{key:<13} {value}")
    log_info(f"{'sync':<13} {'enabled' if config.sync_enabled else 'disabled (B2_BUCKET or B2_APP_KEY missing)'}")

    log_step("Tools")
    version = rclone_version()
    if version:
        log_success(version)
    else:
        log_warn("rclone not installed (run: gpu-provision setup-rclone)")

    if args.check_bucket:
        log_step("B2 bucket")
        preflight(config)
    return EXIT_OK


# =============================================================================
# rclone setup subcommand
# =============================================================================

def cmd_setup_rclone(args: argparse.Namespace) -> int:
    """Install rclone and write the B2 remote."""
    log_step("rclone setup")
    config = _load_config(args)
    if not install_rclone(dry_run=args.dry_run):
        return EXIT_ERROR
    if args.dry_run:
        log_info(f"[DRY RUN] Would configure remote '{config.remote_name}'")
        return EXIT_OK
    write_rclone_config(config, path=args.config_path)
    return EXIT_OK


# =============================================================================
# Sync subcommands
# =============================================================================

def _list_remotes(tasks: List[SyncTask]) -> None:
    for task in tasks:
        files = list_remote(task.remote)
        if files is None:
            log_warn(f"{task.label}: {task.remote} (empty or not found)")
        else:
            log_info(f"{task.label}: {len(files)} files in {task.remote}")


def cmd_sync(args: argparse.Namespace) -> int:
    """Pull the profile's B2 prefixes onto this instance in parallel."""
    log_step(f"Syncing {args.profile} data from B2")
    config = _load_config(args)
    if not config.sync_enabled:
        log_info("Skipping B2 sync (B2_BUCKET or B2_APP_KEY not configured)")

    tasks = download_tasks(config)
    if args.only:
        tasks = [t for t in tasks if t.label in args.only]
    if args.list:
        _list_remotes(tasks)
    report = _orchestrator(args, config).run(tasks)
    log_report(report)
    return _sync_exit(report, args.strict)


def cmd_push_outputs(args: argparse.Namespace) -> int:
    """Upload this instance's outputs to a hostname-separated prefix."""
    log_step("Pushing outputs to B2")
    config = _load_config(args)
    task = output_task(config, hostname=args.hostname)
    if task is None:
        log_error("B2_BUCKET, B2_APP_KEY and an outputs path are required")
        return EXIT_ERROR

    report = _orchestrator(args, config).run([task])
    log_report(report)
    if not report.ok:
        return EXIT_PARTIAL

    log_info(f"Files uploaded to: {task.remote}")
    log_info("To download from another machine:")
    log_info(f"  rclone copy {task.remote} ./downloaded_outputs --progress")
    return EXIT_OK


# =============================================================================
# Custom nodes subcommand
# =============================================================================

def _node_urls(args: argparse.Namespace) -> List[str]:
    if getattr(args, "nodes_file", None):
        return read_node_list(args.nodes_file)
    return list(DEFAULT_CUSTOM_NODES)


def cmd_nodes(args: argparse.Namespace) -> int:
    """Install or update ComfyUI custom nodes."""
    log_step("Installing custom nodes")
    config = _load_config(args)
    try:
        urls = _node_urls(args)
    except OSError as e:
        log_error(f"Cannot read node list: {e}")
        return EXIT_ERROR

    custom_nodes = os.path.join(comfyui_dir(config), "custom_nodes")
    install_custom_nodes(urls, custom_nodes, python=args.python, dry_run=args.dry_run)
    return EXIT_OK


# =============================================================================
# Cleanup subcommand
# =============================================================================

def cmd_cleanup(args: argparse.Namespace) -> int:
    """Delete old outputs when the workspace is low on space."""
    log_step("Disk cleanup")
    config = _load_config(args)
    if config.profile == "aitoolkit":
        dirs = [os.path.join(aitoolkit_dir(config), "output")]
    else:
        comfy = comfyui_dir(config)
        dirs = [os.path.join(comfy, "output"), os.path.join(comfy, "temp")]

    try:
        cleanup_if_low_disk(config.workspace, dirs,
                            min_free_mb=args.min_free_mb, max_age_hours=args.max_age_hours)
    except OSError as e:
        log_error(f"Cleanup failed: {e}")
        return EXIT_ERROR
    return EXIT_OK


# =============================================================================
# Provision subcommand
# =============================================================================

def _write_hf_env(toolkit: str, hf_token: Optional[str]) -> None:
    if not hf_token:
        log_info("Skipping .env creation (HF_TOKEN not configured)")
        return
    with open(os.path.join(toolkit, ".env"), "w") as f:
        f.write(f"HF_TOKEN={hf_token}\n")
    log_success("HF_TOKEN configured in .env")


def _provision_comfyui(args: argparse.Namespace, config: ProvisionConfig, node_urls: List[str]) -> bool:
    comfy = comfyui_dir(config)

    if config.profile == "serverless":
        # The serverless base image ships ComfyUI and starts it itself
        if not os.path.isdir(comfy):
            log_error(f"ComfyUI not found at {comfy}")
            log_error("Serverless provisioning expects the vastai/comfy base image")
            return False
    else:
        log_step("Setting up ComfyUI")
        if clone_or_update(COMFYUI_REPO, comfy) == "failed":
            return False
        pip_install_requirements(os.path.join(comfy, "requirements.txt"), python=args.python)

    if not args.skip_packages:
        log_step("Installing system dependencies")
        install_system_packages(COMFY_SYSTEM_PACKAGES)
        log_step("Installing common Python dependencies")
        pip_install(COMFY_PYTHON_PACKAGES, python=args.python)
        if config.profile != "serverless":
            log_step("Installing SageAttention")
            pip_install(SAGEATTENTION_PACKAGES, python=args.python)

    log_step("Installing custom nodes")
    install_custom_nodes(node_urls, os.path.join(comfy, "custom_nodes"), python=args.python)
    return True


def _provision_aitoolkit(args: argparse.Namespace, config: ProvisionConfig) -> bool:
    toolkit = aitoolkit_dir(config)

    log_step("Setting up AI-Toolkit")
    if clone_or_update(AITOOLKIT_REPO, toolkit) == "failed":
        return False

    if not args.skip_packages:
        install_torch(python=args.python)
        pip_install_requirements(os.path.join(toolkit, "requirements.txt"), python=args.python)
        if install_nodejs():
            npm_install(toolkit)

    _write_hf_env(toolkit, config.hf_token)
    return True


def cmd_provision(args: argparse.Namespace) -> int:
    """Full instance setup: rclone, application, nodes, sync, services."""
    start = time.monotonic()
    config = _load_config(args)
    log_banner(f"=== {args.profile} provisioning ===")
    log_info(f"Workspace: {config.workspace}")

    node_urls: List[str] = []
    if config.profile != "aitoolkit":
        try:
            node_urls = _node_urls(args)
        except OSError as e:
            log_error(f"Cannot read node list: {e}")
            return EXIT_ERROR

    if args.dry_run:
        log_info("[DRY RUN] Would install rclone, application and dependencies")
    else:
        os.makedirs(config.workspace, exist_ok=True)

        log_step("Installing rclone")
        if config.sync_enabled and install_rclone():
            write_rclone_config(config)
        elif not config.sync_enabled:
            log_info("B2 not configured, skipping rclone")

        if config.profile == "aitoolkit":
            ok = _provision_aitoolkit(args, config)
        else:
            ok = _provision_comfyui(args, config, node_urls)
        if not ok:
            return EXIT_ERROR

    log_step("Syncing from B2")
    if config.sync_enabled and not args.dry_run:
        preflight(config)
    elif not config.sync_enabled:
        log_info("Skipping B2 sync (B2_BUCKET or B2_APP_KEY not configured)")
    report = _orchestrator(args, config).run(download_tasks(config))
    log_report(report)

    log_banner(f"Setup complete! (took {format_elapsed(time.monotonic() - start)})")

    if config.profile == "serverless":
        log_info("The pyworker will now start ComfyUI and begin accepting requests.")
        custom_nodes = os.path.join(comfyui_dir(config), "custom_nodes")
        log_info(f"Custom nodes: {len(installed_nodes(custom_nodes))} installed")
    elif not args.no_start:
        spec = _service_spec(args, config)
        start_service(spec, dry_run=args.dry_run)
        print_tunnel_instructions(spec)

    return _sync_exit(report, args.strict)


# =============================================================================
# Service and training subcommands
# =============================================================================

def _service_spec(args: argparse.Namespace, config: ProvisionConfig) -> ServiceSpec:
    if config.profile == "aitoolkit":
        return aitoolkit_ui_service(aitoolkit_dir(config), config.workspace)
    return comfyui_service(comfyui_dir(config), config.workspace, python=getattr(args, "python", None))


def cmd_start(args: argparse.Namespace) -> int:
    """Start the profile's UI in the background unless it is already running."""
    config = _load_config(args)
    spec = _service_spec(args, config)
    log_step(f"Starting {spec.name}")
    if not os.path.isdir(spec.cwd):
        log_error(f"{spec.cwd} not found (run: gpu-provision provision {config.profile})")
        return EXIT_ERROR

    pid = start_service(spec, dry_run=args.dry_run)
    if pid is None and not args.dry_run:
        return EXIT_ERROR
    print_tunnel_instructions(spec)
    return EXIT_OK


def _list_training_configs(config_dir: str) -> None:
    log_info("Usage: gpu-provision train config/your_config.yml")
    log_info(f"Example configs in: {config_dir}")
    if not os.path.isdir(config_dir) or not os.listdir(config_dir):
        log_info("  (no configs found)")
        return
    for name in sorted(os.listdir(config_dir)):
        log_info(f"  {name}")


def cmd_train(args: argparse.Namespace) -> int:
    """Run an AI-Toolkit training job in the foreground."""
    config = _load_config(args)
    toolkit = aitoolkit_dir(config)
    config_dir = os.path.join(toolkit, "config")

    if not args.config:
        _list_training_configs(config_dir)
        return EXIT_ERROR
    if not os.path.isfile(os.path.join(toolkit, args.config)):
        log_error(f"Training config not found: {args.config}")
        _list_training_configs(config_dir)
        return EXIT_ERROR

    cmd = [args.python or sys.executable, "run.py", args.config]
    log_step(f"Training with {args.config}")
    try:
        result = subprocess.run(cmd, cwd=toolkit)
    except OSError as e:
        log_error(f"Failed to run training: {e}")
        return EXIT_ERROR
    if result.returncode != 0:
        log_error(f"Training exited with code {result.returncode}")
    return result.returncode


# =============================================================================
# Argument parsing
# =============================================================================

def _add_sync_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--transfers", type=int, help="Parallel file transfers per task (default: 16)")
    parser.add_argument("--checkers", type=int, help="Parallel checkers per task (default: 32)")
    parser.add_argument("--timeout", type=float,
                        help="Per-task timeout in seconds (default: SYNC_TIMEOUT or none)")
    parser.add_argument("--strict", action="store_true",
                        help="Exit with status 2 if any sync task fails")
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="gpu-provision",
        description="Provision GPU instances for ComfyUI and AI-Toolkit",
    )
    parser.add_argument("--workspace", help="Override WORKSPACE")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- info ---
    p_info = subparsers.add_parser("info", help="Show environment and configuration")
    p_info.add_argument("--profile", choices=PROFILES, default="comfyui")
    p_info.add_argument("--check-bucket", action="store_true",
                        help="Check B2 credentials and list prefix sizes")

    # --- setup-rclone ---
    p_rclone = subparsers.add_parser("setup-rclone", help="Install rclone and configure the B2 remote")
    p_rclone.add_argument("--config-path", help="rclone.conf path (default: ~/.config/rclone/rclone.conf)")
    p_rclone.add_argument("--dry-run", action="store_true", help="Show what would be done")

    # --- sync ---
    p_sync = subparsers.add_parser("sync", help="Parallel sync from B2 to this instance")
    p_sync.add_argument("profile", choices=PROFILES)
    p_sync.add_argument("--only", action="append",
                        help="Only sync tasks with this label (can repeat)")
    p_sync.add_argument("--list", action="store_true",
                        help="List remote files for each task before syncing")
    p_sync.add_argument("--dry-run", action="store_true", help="Print rclone commands only")
    _add_sync_options(p_sync)

    # --- push-outputs ---
    p_push = subparsers.add_parser("push-outputs", help="Upload outputs to B2 under this hostname")
    p_push.add_argument("profile", choices=PROFILES)
    p_push.add_argument("--hostname", help="Override the hostname used as prefix")
    p_push.add_argument("--dry-run", action="store_true", help="Print rclone command only")
    _add_sync_options(p_push)

    # --- nodes ---
    p_nodes = subparsers.add_parser("nodes", help="Install ComfyUI custom nodes")
    p_nodes.add_argument("--nodes-file", help="File with one repository URL per line")
    p_nodes.add_argument("--python", help="Interpreter for pip and install.py")
    p_nodes.add_argument("--dry-run", action="store_true", help="Show what would be done")

    # --- provision ---
    p_prov = subparsers.add_parser("provision", help="Full instance setup")
    p_prov.add_argument("profile", choices=PROFILES)
    p_prov.add_argument("--nodes-file", help="File with one custom node URL per line")
    p_prov.add_argument("--python", help="Interpreter for pip and install.py")
    p_prov.add_argument("--skip-packages", action="store_true",
                        help="Skip apt/pip/npm dependency installation")
    p_prov.add_argument("--no-start", action="store_true", help="Don't start the UI afterwards")
    p_prov.add_argument("--dry-run", action="store_true", help="Show what would be done")
    _add_sync_options(p_prov)

    # --- start ---
    p_start = subparsers.add_parser("start", help="Start ComfyUI or the AI-Toolkit UI in the background")
    p_start.add_argument("profile", choices=PROFILES)
    p_start.add_argument("--python", help="Interpreter for ComfyUI")
    p_start.add_argument("--dry-run", action="store_true", help="Show what would be done")

    # --- train ---
    p_train = subparsers.add_parser("train", help="Run an AI-Toolkit training config")
    p_train.add_argument("config", nargs="?", help="Config path relative to ai-toolkit (e.g. config/my_lora.yml)")
    p_train.add_argument("--python", help="Interpreter for run.py")
    p_train.set_defaults(profile="aitoolkit")

    # --- cleanup ---
    p_clean = subparsers.add_parser("cleanup", help="Remove old outputs when disk space is low")
    p_clean.add_argument("--profile", choices=PROFILES, default="comfyui")
    p_clean.add_argument("--min-free-mb", type=int, default=512,
                         help="Clean only below this much free space (default: 512)")
    p_clean.add_argument("--max-age-hours", type=float, default=24,
                         help="Delete files older than this (default: 24)")

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_ERROR

    handlers = {
        "info": cmd_info,
        "setup-rclone": cmd_setup_rclone,
        "sync": cmd_sync,
        "push-outputs": cmd_push_outputs,
        "nodes": cmd_nodes,
        "provision": cmd_provision,
        "start": cmd_start,
        "train": cmd_train,
        "cleanup": cmd_cleanup,
    }

    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return EXIT_ERROR

    try:
        return handler(args)
    except ConfigError as e:
        log_error(str(e))
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
