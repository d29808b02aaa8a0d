"""Operational scripts run as subprocesses against a per-test SQLite database."""

import json
import os
import subprocess
import sys
from pathlib import Path

SCRIPTS = Path(__file__).parent.parent / "scripts"


def run_script(name, config, *args):
    """Returns: (returncode, stdout, stderr)"""
    env = dict(os.environ)
    env["DATABASE_URL"] = config.database_url
    env["LEADERBOARD_REPOS_DIR"] = config.repos_dir
    result = subprocess.run(
        [sys.executable, str(SCRIPTS / name), *args],
        capture_output=True,
        text=True,
        timeout=60,
        env=env,
    )
    return result.returncode, result.stdout, result.stderr


def test_queue_status_json_on_empty_database(pipeline, config):
    returncode, stdout, stderr = run_script("queue_status.py", config, "--json")

    assert returncode == 0, stderr
    data = json.loads(stdout)
    assert [q["queue"] for q in data["queues"]] == ["commits", "users"]
    assert data["repositories"] == {}
    assert data["jobs"] == []


def test_redrive_enqueues_commit_job_for_pending_repository(pipeline, config):
    pipeline.store.get_or_create_repository("https://github.com/owner/repo", "owner__repo")

    returncode, stdout, stderr = run_script("redrive_pipeline.py", config, "--json")

    assert returncode == 0, stderr
    assert len(json.loads(stdout)["commit_jobs"]) == 1

    returncode, stdout, _ = run_script("queue_status.py", config, "--json", "--queue", "commits")
    data = json.loads(stdout)
    assert data["queues"][0]["pending"] == 1
    assert data["repositories"] == {"pending": 1}
    assert "payload" not in data["jobs"][0]


def test_worker_once_exits_on_empty_queue(pipeline, config):
    returncode, _, stderr = run_script("run_worker.py", config, "--queue", "users", "--once")

    assert returncode == 0, stderr
    assert "stopping after 0 job(s)" in stderr
