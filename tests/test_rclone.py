"""Tests for rclone command building, install and configuration."""

import configparser
import os
import subprocess
from unittest.mock import MagicMock, patch

import requests

from provisioning.config import ProvisionConfig
from provisioning.rclone import (
    SyncFlags, build_copy_command, install_rclone, list_remote, rclone_version,
    write_rclone_config,
)


class TestSyncFlags:

    def test_default_flags(self):
        args = SyncFlags().to_args()
        assert args[args.index("--transfers") + 1] == "16"
        assert args[args.index("--checkers") + 1] == "32"
        assert args[args.index("--multi-thread-streams") + 1] == "8"
        assert args[args.index("--multi-thread-cutoff") + 1] == "100M"
        assert args[args.index("--buffer-size") + 1] == "64M"
        assert "--fast-list" in args
        assert "--ignore-existing" in args

    def test_switches_can_be_disabled(self):
        args = SyncFlags(fast_list=False, ignore_existing=False).to_args()
        assert "--fast-list" not in args
        assert "--ignore-existing" not in args


class TestBuildCopyCommand:

    def test_basic(self):
        cmd = build_copy_command("b2:bucket/models", "/workspace/models")
        assert cmd[:4] == ["rclone", "copy", "b2:bucket/models", "/workspace/models"]

    def test_excludes_appended(self):
        cmd = build_copy_command("a", "b", excludes=("archive/**", "*.tmp"))
        assert cmd[-4:] == ["--exclude", "archive/**", "--exclude", "*.tmp"]


class TestWriteConfig:

    def test_writes_b2_remote(self, tmp_path, b2_env):
        conf = tmp_path / "rclone" / "rclone.conf"
        path = write_rclone_config(ProvisionConfig.from_env(b2_env), path=conf)

        assert path == conf
        parser = configparser.ConfigParser()
        parser.read(conf)
        assert parser["b2"]["type"] == "b2"
        assert parser["b2"]["account"] == "0041234567890abc"
        assert parser["b2"]["key"] == "K004secretsecret"
        assert parser["b2"]["hard_delete"] == "true"
        assert oct(os.stat(conf).st_mode & 0o777) == oct(0o600)

    def test_preserves_other_remotes(self, tmp_path, b2_env):
        conf = tmp_path / "rclone.conf"
        conf.write_text("[gdrive]\ntype = drive\n\n[b2]\ntype = b2\naccount = stale\n")
        write_rclone_config(ProvisionConfig.from_env(b2_env), path=conf)

        parser = configparser.ConfigParser()
        parser.read(conf)
        assert parser["gdrive"]["type"] == "drive"
        assert parser["b2"]["account"] == "0041234567890abc"

    def test_skipped_without_key(self, tmp_path):
        conf = tmp_path / "rclone.conf"
        assert write_rclone_config(ProvisionConfig.from_env({"WORKSPACE": "/ws"}), path=conf) is None
        assert not conf.exists()


class TestInstall:

    @patch("provisioning.rclone.requests.get")
    @patch("provisioning.rclone.rclone_version", return_value="rclone v1.66.0")
    def test_already_installed(self, mock_version, mock_get):
        assert install_rclone()
        mock_get.assert_not_called()

    @patch("provisioning.rclone.subprocess.run")
    @patch("provisioning.rclone.requests.get")
    @patch("provisioning.rclone.rclone_version", side_effect=[None, "rclone v1.66.0"])
    def test_installs_via_script(self, mock_version, mock_get, mock_run):
        mock_get.return_value = MagicMock(text="#!/bin/bash\necho install\n")
        mock_run.return_value = MagicMock(returncode=0, stderr="")

        assert install_rclone()
        args, kwargs = mock_run.call_args
        assert args[0] == ["bash"]
        assert kwargs["input"].startswith("#!/bin/bash")

    @patch("provisioning.rclone.requests.get", side_effect=requests.ConnectionError("offline"))
    @patch("provisioning.rclone.rclone_version", return_value=None)
    def test_fetch_failure(self, mock_version, mock_get):
        assert not install_rclone()

    @patch("provisioning.rclone.subprocess.run")
    @patch("provisioning.rclone.requests.get")
    @patch("provisioning.rclone.rclone_version", return_value=None)
    def test_installer_failure(self, mock_version, mock_get, mock_run):
        mock_get.return_value = MagicMock(text="exit 1")
        mock_run.return_value = MagicMock(returncode=1, stderr="unzip: not found\n")
        assert not install_rclone()

    @patch("provisioning.rclone.requests.get")
    @patch("provisioning.rclone.rclone_version", return_value=None)
    def test_dry_run(self, mock_version, mock_get):
        assert install_rclone(dry_run=True)
        mock_get.assert_not_called()


class TestVersionAndListing:

    @patch("provisioning.rclone.shutil.which", return_value=None)
    def test_version_missing_binary(self, mock_which):
        assert rclone_version() is None

    @patch("provisioning.rclone.subprocess.run")
    @patch("provisioning.rclone.shutil.which", return_value="/usr/bin/rclone")
    def test_version_first_line(self, mock_which, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="rclone v1.66.0\n- os/version: ubuntu\n")
        assert rclone_version() == "rclone v1.66.0"

    @patch("provisioning.rclone.subprocess.run")
    def test_list_remote(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout=" 1024 a.safetensors\n  2048 b/c.ckpt\n\n")
        assert list_remote("b2:bucket/models") == ["1024 a.safetensors", "2048 b/c.ckpt"]

    @patch("provisioning.rclone.subprocess.run")
    def test_list_remote_failure(self, mock_run):
        mock_run.return_value = MagicMock(returncode=3, stdout="")
        assert list_remote("b2:bucket/missing") is None

    @patch("provisioning.rclone.subprocess.run", side_effect=subprocess.TimeoutExpired("rclone", 120))
    def test_list_remote_timeout(self, mock_run):
        assert list_remote("b2:bucket/slow") is None
