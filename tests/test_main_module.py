"""Tests for running the app as ``python -m opsagent``."""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path


def test_module_help() -> None:
    src = Path(__file__).resolve().parents[1] / "src"
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(src), env.get("PYTHONPATH")]))
    result = subprocess.run(
        [sys.executable, "-m", "opsagent", "--help"],
        capture_output=True,
        text=True,
        check=False,
        env=env,
    )

    assert result.returncode == 0
    assert "Operations agent" in result.stdout
    assert "--fleet-update" in result.stdout
