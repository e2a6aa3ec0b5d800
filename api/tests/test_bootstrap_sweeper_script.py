from __future__ import annotations

import hashlib
import subprocess
import sys
from pathlib import Path


SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "bootstrap_sweeper.py"


def _run_script(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=False,
        capture_output=True,
        text=True,
    )


def test_bootstrap_script_hashes_plain_api_key() -> None:
    completed = _run_script("--api-key", "sweeper-key")

    assert completed.returncode == 0
    output = completed.stdout
    expected_hash = hashlib.sha256(b"sweeper-key").hexdigest()
    assert "insert into modules (module_id, name, kind, enabled, scopes)" in output
    assert "values ('slot-sweeper', 'Slot expiry sweeper', 'scheduler', true, array['slots:sweep']::text[])" in output
    assert "set is_active = false, revoked_at = now()" in output
    assert f"select id, '{expected_hash}', true" in output
    assert "sweeper-key'" not in output


def test_bootstrap_script_accepts_precomputed_hash_and_scopes() -> None:
    completed = _run_script(
        "--module-id",
        "o'brien-sweeper",
        "--key-hash",
        "abc123",
        "--scope",
        "slots:sweep",
        "--scope",
        "slots:read",
    )

    assert completed.returncode == 0
    assert "'o''brien-sweeper'" in completed.stdout
    assert "array['slots:sweep', 'slots:read']::text[]" in completed.stdout
    assert "select id, 'abc123', true" in completed.stdout


def test_bootstrap_script_requires_a_key() -> None:
    completed = _run_script("--module-id", "slot-sweeper")

    assert completed.returncode != 0
    assert "--api-key" in completed.stderr
