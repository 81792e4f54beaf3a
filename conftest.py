import stat
import sys

import pytest


B2_ENV = {
    "B2_BUCKET": "render-farm",
    "B2_APP_KEY_ID": "0041234567890abc",
    "B2_APP_KEY": "K004secretsecret",
}


@pytest.fixture
def b2_env(tmp_path):
    """Environment of an instance with B2 configured and a temp workspace."""
    env = dict(B2_ENV)
    env["WORKSPACE"] = str(tmp_path / "workspace")
    return env


@pytest.fixture
def fake_rclone(tmp_path):
    """Executable standing in for rclone.

    ``copy SRC DST`` writes DST/synced.txt, or exits 1 when SRC contains
    'unreachable'.
    """
    script = tmp_path / "fake_rclone"
    script.write_text(
        f"#!{sys.executable}\n"
        "import os, sys, time\n"
        "src, dst = sys.argv[2], sys.argv[3]\n"
        "time.sleep(0.1)\n"
        "if 'unreachable' in src:\n"
        "    sys.stderr.write('Failed to copy: dial tcp: connection refused\\n')\n"
        "    sys.exit(1)\n"
        "with open(os.path.join(dst, 'synced.txt'), 'w') as f:\n"
        "    f.write(src)\n"
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)
