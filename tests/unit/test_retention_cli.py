"""Tests for the retention CLI."""

from unittest.mock import patch

import pytest

from app.cli.retention import main
from app.models import Project, ProjectStatus
from app.storage.factory import set_storage_provider


@pytest.fixture
def cli_env(session_factory, storage):
    set_storage_provider(storage)
    with patch("app.cli.retention.get_db_session", side_effect=lambda: session_factory()):
        yield


class TestRetentionCli:
    def test_list_policies(self, cli_env, capsys):
        main(["list-policies"])

        out = capsys.readouterr().out
        assert "archived-projects-cleanup [ENABLED]" in out
        assert "Retention: 90 days" in out

    def test_status(self, cli_env, capsys):
        main(["status"])
        assert "Policies: 4 (4 enabled)" in capsys.readouterr().out

    def test_run_single_policy(self, cli_env, capsys):
        main(["run", "--policy", "temp-files-cleanup"])

        out = capsys.readouterr().out
        assert "Expired exports" in out
        assert "Policy temp-files-cleanup" in out

    def test_run_unknown_policy_exits(self, cli_env):
        with pytest.raises(SystemExit) as exc_info:
            main(["run", "--policy", "nope", "--skip-expiry"])
        assert exc_info.value.code == 1

    def test_purge_requires_confirm(self, cli_env, db, seeded):
        with pytest.raises(SystemExit) as exc_info:
            main(["purge-project", seeded.project_id])

        assert exc_info.value.code == 1
        assert db.query(Project).count() == 1

    def test_purge_project(self, cli_env, db, make_project, capsys):
        seeded = make_project(status=ProjectStatus.ARCHIVED.value)

        main(["purge-project", seeded.project_id, "--confirm"])

        assert f"Purged project {seeded.project_id}" in capsys.readouterr().out
        db.expire_all()
        assert db.query(Project).count() == 0

    def test_cleanup_stale_exports(self, cli_env, capsys):
        main(["cleanup-stale-exports", "--hours", "1"])
        assert "Marked 0 stale exports as failed" in capsys.readouterr().out
