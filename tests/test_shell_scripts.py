"""Tests for the instance entry-point shell scripts - syntax and conventions."""

import shutil
import subprocess
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent
SCRIPTS_DIR = PROJECT_ROOT / "scripts"


def get_shell_scripts():
    """Get all shell scripts in scripts/."""
    return sorted(SCRIPTS_DIR.glob("*.sh"))


def test_scripts_exist():
    """The Vast.ai entry point should be present."""
    assert (SCRIPTS_DIR / "vast_onstart.sh").exists()


@pytest.mark.skipif(not shutil.which("bash"), reason="bash not available")
@pytest.mark.parametrize("script", get_shell_scripts(), ids=lambda p: p.name)
def test_bash_syntax(script):
    """Each shell script should pass bash -n syntax check."""
    result = subprocess.run(
        ["bash", "-n", str(script)],
        capture_output=True, text=True,
    )
    assert result.returncode == 0, (
        f"Syntax error in {script.name}: {result.stderr.strip()}"
    )


class TestShellConventions:
    """Check shell scripts follow expected conventions."""

    @pytest.mark.parametrize("script", get_shell_scripts(), ids=lambda p: p.name)
    def test_has_shebang(self, script):
        first_line = script.read_text(encoding="utf-8").split("\n")[0]
        assert first_line.startswith("#!"), f"{script.name} missing shebang"

    @pytest.mark.parametrize("script", get_shell_scripts(), ids=lambda p: p.name)
    def test_uses_set_e(self, script):
        assert "set -e" in script.read_text(encoding="utf-8"), f"{script.name} missing 'set -e'"

    @pytest.mark.parametrize("script", get_shell_scripts(), ids=lambda p: p.name)
    def test_no_inline_credentials(self, script):
        """Keys come from the instance environment, never the script."""
        content = script.read_text(encoding="utf-8")
        for name in ("B2_APP_KEY=", "HF_TOKEN=", "B2_APP_KEY_ID="):
            assert name not in content, f"{script.name} assigns {name[:-1]}"

    def test_onstart_runs_provision(self):
        content = (SCRIPTS_DIR / "vast_onstart.sh").read_text(encoding="utf-8")
        assert "-m provisioning provision" in content
