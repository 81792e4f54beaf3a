"""GPU instance provisioning for ComfyUI and AI-Toolkit."""

__version__ = "0.3.0"

from .logging import Colors, log_info, log_success, log_warn, log_error, log_step
from .config import ProvisionConfig, ConfigError, PROFILES
from .environment import CloudEnvironment, detect_cloud_environment, work_dir_for_provider
from .rclone import SyncFlags, build_copy_command, install_rclone, write_rclone_config
from .sync import (
    SyncTask, SyncResult, BatchReport, SyncOrchestrator,
    run_sync_batch, log_report,
)
from .plans import comfyui_tasks, aitoolkit_tasks, download_tasks, output_task
