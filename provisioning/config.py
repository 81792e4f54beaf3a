"""Provisioning configuration read from the instance environment.

Cloud templates (Vast.ai, Modal) pass credentials and bucket layout as
environment variables. They are read exactly once into a
``ProvisionConfig``, which is then handed to every step explicitly.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .environment import detect_cloud_environment

PROFILES = ("comfyui", "serverless", "aitoolkit")

DEFAULT_REMOTE = "b2"
DEFAULT_B2_REGION = "us-west-004"

# Bucket prefixes per profile, overridable through B2_<NAME>_PATH
PROFILE_PATHS: Dict[str, Dict[str, str]] = {
    "comfyui": {
        "models": "comfy_models",
        "workflows": "comfy_workflows",
        "inputs": "comfy_inputs",
        "outputs": "comfy_outputs",
    },
    "serverless": {
        "models": "comfy_models",
        "workflows": "comfy_workflows",
        "inputs": "comfy_inputs",
        "outputs": "comfy_outputs",
    },
    "aitoolkit": {
        "models": "aitoolkit_models",
        "datasets": "aitoolkit_datasets",
        "configs": "aitoolkit_configs",
        "outputs": "aitoolkit_outputs",
    },
}

PATH_KINDS = ("models", "datasets", "configs", "outputs", "workflows", "inputs")


class ConfigError(ValueError):
    """Raised when an environment value cannot be interpreted."""


@dataclass
class ProvisionConfig:
    """Everything a provisioning run needs to know up front."""
    profile: str = "comfyui"
    workspace: str = "/workspace"
    bucket: Optional[str] = None
    key_id: Optional[str] = None
    key: Optional[str] = None
    paths: Dict[str, str] = field(default_factory=dict)
    hf_token: Optional[str] = None
    remote_name: str = DEFAULT_REMOTE
    s3_endpoint: Optional[str] = None
    sync_timeout: Optional[float] = None

    @property
    def sync_enabled(self) -> bool:
        """B2 sync runs only with both a bucket and an application key."""
        return bool(self.bucket) and bool(self.key)

    def remote_path(self, prefix: str) -> str:
        """Bucket-qualified rclone path, e.g. ``b2:bucket/comfy_models``."""
        prefix = prefix.strip("/")
        if prefix:
            return f"{self.remote_name}:{self.bucket}/{prefix}"
        return f"{self.remote_name}:{self.bucket}"

    def path_for(self, kind: str) -> Optional[str]:
        return self.paths.get(kind)

    def redacted(self) -> Dict[str, object]:
        """Summary safe to print: secrets are masked."""
        return {
            "profile": self.profile,
            "workspace": self.workspace,
            "bucket": self.bucket or "(not set)",
            "key_id": _mask(self.key_id),
            "key": _mask(self.key),
            "paths": dict(self.paths),
            "hf_token": _mask(self.hf_token),
            "s3_endpoint": self.s3_endpoint,
            "sync_timeout": self.sync_timeout,
        }

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        profile: str = "comfyui",
    ) -> "ProvisionConfig":
        """Build a config from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)
            profile: One of ``PROFILES``; selects the default bucket layout

        Returns:
            Populated ProvisionConfig

        Raises:
            ConfigError: On an unknown profile or malformed value
        """
        env = os.environ if environ is None else environ
        if profile not in PROFILES:
            raise ConfigError(f"Unknown profile {profile!r} (expected one of {', '.join(PROFILES)})")

        workspace = _get(env, "WORKSPACE") or detect_cloud_environment(env).work_dir

        paths = dict(PROFILE_PATHS[profile])
        for kind in PATH_KINDS:
            override = _get(env, f"B2_{kind.upper()}_PATH")
            if override:
                paths[kind] = override.strip("/")

        endpoint = _get(env, "B2_S3_ENDPOINT")
        if not endpoint:
            region = _get(env, "B2_REGION") or DEFAULT_B2_REGION
            endpoint = f"https://s3.{region}.backblazeb2.com"

        return cls(
            profile=profile,
            workspace=workspace,
            bucket=_get(env, "B2_BUCKET") or _get(env, "B2_BUCKET_NAME"),
            key_id=_get(env, "B2_APP_KEY_ID") or _get(env, "B2_KEY_ID"),
            key=_get(env, "B2_APP_KEY"),
            paths=paths,
            hf_token=_get(env, "HF_TOKEN"),
            remote_name=_get(env, "RCLONE_REMOTE") or DEFAULT_REMOTE,
            s3_endpoint=endpoint,
            sync_timeout=_parse_timeout(_get(env, "SYNC_TIMEOUT")),
        )


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_timeout(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"SYNC_TIMEOUT must be a number of seconds, got {raw!r}")
    if value <= 0:
        return None
    return value


def _mask(secret: Optional[str]) -> str:
    if not secret:
        return "(not set)"
    if len(secret) <= 4:
        return "****"
    return f"{secret[:4]}****"
