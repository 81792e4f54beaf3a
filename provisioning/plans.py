"""Sync task lists for each provisioning profile."""

import os
from typing import List, Optional

from .config import ProvisionConfig
from .environment import instance_hostname
from .sync import SyncTask, UPLOAD

COMFY_MODEL_TYPES = (
    "diffusion_models",
    "checkpoints",
    "controlnet",
    "clip",
    "clip_vision",
    "loras",
    "text_encoders",
    "vae",
    "upscale_models",
)

# Old versions kept in the bucket but never pulled onto instances
ARCHIVE_EXCLUDES = ("archive/**",)


def comfyui_dir(config: ProvisionConfig) -> str:
    return os.path.join(config.workspace, "ComfyUI")


def aitoolkit_dir(config: ProvisionConfig) -> str:
    return os.path.join(config.workspace, "ai-toolkit")


def comfyui_tasks(config: ProvisionConfig) -> List[SyncTask]:
    """Model folders, workflows and input media for a ComfyUI instance."""
    if not config.sync_enabled:
        return []

    comfy = comfyui_dir(config)
    tasks: List[SyncTask] = []

    models = config.path_for("models")
    if models:
        for model_type in COMFY_MODEL_TYPES:
            tasks.append(SyncTask(
                label=model_type,
                remote=config.remote_path(f"{models}/{model_type}"),
                local=os.path.join(comfy, "models", model_type),
                excludes=ARCHIVE_EXCLUDES,
            ))

    workflows = config.path_for("workflows")
    if workflows:
        tasks.append(SyncTask(
            label="workflows",
            remote=config.remote_path(workflows),
            local=os.path.join(comfy, "user", "default", "workflows"),
            excludes=ARCHIVE_EXCLUDES,
        ))

    inputs = config.path_for("inputs")
    if inputs:
        tasks.append(SyncTask(
            label="inputs",
            remote=config.remote_path(inputs),
            local=os.path.join(config.workspace, "comfy_inputs"),
            excludes=ARCHIVE_EXCLUDES,
        ))

    return tasks


def aitoolkit_tasks(config: ProvisionConfig) -> List[SyncTask]:
    """Models, datasets and training configs for an AI-Toolkit instance."""
    if not config.sync_enabled:
        return []

    root = aitoolkit_dir(config)
    targets = (
        ("models", "models"),
        ("datasets", "datasets"),
        ("configs", "config"),
    )
    tasks: List[SyncTask] = []
    for kind, subdir in targets:
        prefix = config.path_for(kind)
        if not prefix:
            continue
        tasks.append(SyncTask(
            label=kind,
            remote=config.remote_path(prefix),
            local=os.path.join(root, subdir),
        ))
    return tasks


def download_tasks(config: ProvisionConfig) -> List[SyncTask]:
    """Download plan for the configured profile."""
    if config.profile == "aitoolkit":
        return aitoolkit_tasks(config)
    return comfyui_tasks(config)


def output_task(config: ProvisionConfig, hostname: Optional[str] = None) -> Optional[SyncTask]:
    """Upload of this instance's outputs, kept apart per hostname.

    Returns:
        The upload task, or None when sync is disabled or no outputs prefix
        is configured
    """
    prefix = config.path_for("outputs")
    if not config.sync_enabled or not prefix:
        return None

    host = hostname or instance_hostname()
    if config.profile == "aitoolkit":
        local = os.path.join(aitoolkit_dir(config), "output")
    else:
        local = os.path.join(comfyui_dir(config), "output")

    return SyncTask(
        label=f"outputs ({host})",
        remote=config.remote_path(f"{prefix}/{host}"),
        local=local,
        direction=UPLOAD,
    )
