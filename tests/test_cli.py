import json
import os
import sys
from pathlib import Path
from subprocess import PIPE, run

ROOT = Path(__file__).resolve().parents[1]


def _cli(tmp_path, *args):
    env = dict(os.environ, DATABASE_URL=f"sqlite:///{tmp_path / 'cli.db'}", LOG_LEVEL="WARNING")
    env.pop("OVERLAY_SEED_PATH", None)
    cmd = [sys.executable, "-m", "profile_engine.cli", *args]
    return run(cmd, stdout=PIPE, stderr=PIPE, text=True, cwd=ROOT, env=env)


def test_init_and_tables(tmp_path):
    proc = _cli(tmp_path, "init")
    assert proc.returncode == 0, f"CLI failed: {proc.stderr}"
    assert "Created: personal_details, documents" in proc.stdout

    again = _cli(tmp_path, "init")
    assert "already initialised" in again.stdout

    listing = _cli(tmp_path, "tables")
    assert listing.returncode == 0, listing.stderr
    lines = listing.stdout.splitlines()
    assert lines[0].strip().startswith("personal_details")
    assert "documents" in lines[-1]


def test_column_commands_and_schema(tmp_path):
    _cli(tmp_path, "init")

    added = _cli(tmp_path, "add-column", "personal_details", "occupation", "--type", "VARCHAR", "--length", "40")
    assert added.returncode == 0, added.stderr

    renamed = _cli(tmp_path, "rename-column", "personal_details", "occupation", "Job Title")
    assert renamed.returncode == 0, renamed.stderr
    assert "job_title" in renamed.stdout

    schema = _cli(tmp_path, "schema", "personal_details")
    assert "  - job_title VARCHAR(40)" in schema.stdout

    protected = _cli(tmp_path, "drop-column", "personal_details", "first_name")
    assert protected.returncode == 1
    assert "protected" in protected.stderr

    assert _cli(tmp_path, "schema", "nowhere").returncode == 2


def test_load_overlay(tmp_path):
    _cli(tmp_path, "init")
    seed = tmp_path / "overlay.json"
    seed.write_text(json.dumps({"columns": [
        {"table": "personal_details", "column": "pan_number", "exactLength": 10},
    ]}), encoding="utf-8")

    proc = _cli(tmp_path, "load-overlay", str(seed))
    assert proc.returncode == 0, proc.stderr
    assert "Applied 1 overlay entry" in proc.stdout

    bad = _cli(tmp_path, "load-overlay", str(tmp_path / "missing.json"))
    assert bad.returncode == 1
    assert "not found" in bad.stderr


def test_profile_not_found(tmp_path):
    _cli(tmp_path, "init")
    proc = _cli(tmp_path, "profile", "42")
    assert proc.returncode == 2
    assert "Profile 42 not found" in proc.stderr
