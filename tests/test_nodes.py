"""Tests for custom node installation."""

import os
from unittest.mock import patch

import pytest

from provisioning.nodes import (
    DEFAULT_CUSTOM_NODES, clone_or_update, install_custom_nodes, installed_nodes,
    read_node_list, repo_name,
)


@pytest.mark.parametrize("url,name", [
    ("https://github.com/rgthree/rgthree-comfy.git", "rgthree-comfy"),
    ("https://github.com/ltdrdata/ComfyUI-Manager", "ComfyUI-Manager"),
    ("https://github.com/evanspearman/ComfyMath/", "ComfyMath"),
])
def test_repo_name(url, name):
    assert repo_name(url) == name


def test_default_nodes_have_unique_names():
    names = [repo_name(u) for u in DEFAULT_CUSTOM_NODES]
    assert len(names) == len(set(names))


def test_read_node_list(tmp_path):
    node_file = tmp_path / "nodes.txt"
    node_file.write_text(
        "https://github.com/a/one.git\n"
        "\n"
        "# https://github.com/a/disabled.git\n"
        "  https://github.com/a/two  \n"
    )
    assert read_node_list(str(node_file)) == [
        "https://github.com/a/one.git",
        "https://github.com/a/two",
    ]


class FakeGit:
    """Stands in for run_command: clones create the checkout directory."""

    def __init__(self, fail_urls=(), failing_cwds=()):
        self.fail_urls = set(fail_urls)
        self.failing_cwds = set(failing_cwds)
        self.calls = []

    def __call__(self, cmd, cwd=None, **kwargs):
        self.calls.append((cmd, cwd))
        if cmd[:2] == ["git", "clone"]:
            url, dest = cmd[-2], cmd[-1]
            if url in self.fail_urls:
                return False
            os.makedirs(dest)
            if "reqs" in url:
                with open(os.path.join(dest, "requirements.txt"), "w") as f:
                    f.write("numpy\n")
            if "installer" in url:
                with open(os.path.join(dest, "install.py"), "w") as f:
                    f.write("print('hi')\n")
            return True
        return cwd not in self.failing_cwds


class TestCloneOrUpdate:

    def test_clone(self, tmp_path):
        git = FakeGit()
        with patch("provisioning.nodes.run_command", git):
            assert clone_or_update("https://x/repo.git", str(tmp_path / "repo"), depth=1) == "cloned"
        assert git.calls[0][0] == ["git", "clone", "--depth", "1", "https://x/repo.git", str(tmp_path / "repo")]

    def test_existing_checkout_is_pulled(self, tmp_path):
        (tmp_path / "repo").mkdir()
        git = FakeGit()
        with patch("provisioning.nodes.run_command", git):
            assert clone_or_update("https://x/repo.git", str(tmp_path / "repo")) == "updated"
        assert git.calls[0][0] == ["git", "-C", str(tmp_path / "repo"), "pull", "--ff-only"]

    def test_failed_clone(self, tmp_path):
        with patch("provisioning.nodes.run_command", FakeGit(fail_urls={"https://x/repo.git"})):
            assert clone_or_update("https://x/repo.git", str(tmp_path / "repo")) == "failed"


class TestInstallCustomNodes:

    def test_counts_and_continues_past_failures(self, tmp_path):
        nodes_dir = tmp_path / "custom_nodes"
        (nodes_dir / "existing").mkdir(parents=True)
        urls = [
            "https://github.com/a/plain.git",
            "",
            "# https://github.com/a/commented.git",
            "https://github.com/a/broken.git",
            "https://github.com/a/existing.git",
            "https://github.com/a/with-reqs.git",
        ]
        git = FakeGit(fail_urls={"https://github.com/a/broken.git"})

        with patch("provisioning.nodes.run_command", git), \
                patch("provisioning.nodes.pip_install_requirements", return_value=True) as mock_pip:
            results = install_custom_nodes(urls, str(nodes_dir))

        assert results == {"cloned": 2, "updated": 1, "failed": 1}
        mock_pip.assert_called_once_with(str(nodes_dir / "with-reqs" / "requirements.txt"), python=None)
        assert sorted(installed_nodes(str(nodes_dir))) == ["existing", "plain", "with-reqs"]

    def test_install_script_failure_counted(self, tmp_path):
        nodes_dir = tmp_path / "custom_nodes"
        dest = str(nodes_dir / "installer-node")
        git = FakeGit(failing_cwds={dest})

        with patch("provisioning.nodes.run_command", git):
            results = install_custom_nodes(["https://github.com/a/installer-node.git"], str(nodes_dir),
                                           python="/venv/bin/python")

        assert results == {"cloned": 1, "updated": 0, "failed": 1}
        assert git.calls[-1] == (["/venv/bin/python", "install.py"], dest)

    def test_dry_run_touches_nothing(self, tmp_path):
        with patch("provisioning.nodes.run_command") as mock_run:
            results = install_custom_nodes(DEFAULT_CUSTOM_NODES, str(tmp_path / "nodes"), dry_run=True)
        mock_run.assert_not_called()
        assert results == {"cloned": 0, "updated": 0, "failed": 0}


def test_installed_nodes_ignores_files_and_hidden(tmp_path):
    (tmp_path / "NodeA").mkdir()
    (tmp_path / "__pycache__").mkdir()
    (tmp_path / ".git").mkdir()
    (tmp_path / "example_node.py.example").write_text("")
    assert installed_nodes(str(tmp_path)) == ["NodeA"]
    assert installed_nodes(str(tmp_path / "missing")) == []
