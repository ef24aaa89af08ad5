# tests/unit/test_retention/test_sweep_service.py
"""Unit tests for retention sweeps and policy execution."""

from dataclasses import replace
from datetime import timedelta
from unittest.mock import patch

import pytest

from app.models import ChapterSummary, ExportRequest, ExportStatus, Interaction, Project, ProjectStatus, Story
from app.services.analytics import AnalyticsEventType, get_events, track_event
from app.services.retention.policy_service import get_retention_policy
from app.services.retention.sweep_service import (
    execute_all_policies,
    execute_policy,
    expire_ready_exports,
    sweep_chapter_summaries,
    sweep_interactions,
    sweep_stories,
)
from app.utils.time import utcnow


def add_export(db, seeded, status, age_days, storage_key=None, **fields) -> ExportRequest:
    export = ExportRequest(
        project_id=seeded.project.id,
        facilitator_id=seeded.facilitator.id,
        status=status,
        format="archive",
        options={},
        storage_key=storage_key,
        created_at=utcnow() - timedelta(days=age_days),
        **fields,
    )
    db.add(export)
    db.commit()
    return export


class TestExportRequestsPolicy:
    """Tests for the export-requests-cleanup policy."""

    def test_old_finished_exports_are_deleted(self, db, storage, seeded):
        keys = []
        for i, status in enumerate(["completed", ExportStatus.READY.value, ExportStatus.FAILED.value]):
            key = f"exports/{seeded.project_id}/old-{i}.zip"
            storage.upload(key, b"x" * 100)
            keys.append(key)
            add_export(db, seeded, status, age_days=100, storage_key=key)
        in_flight = add_export(db, seeded, ExportStatus.PROCESSING.value, age_days=100)
        recent = add_export(db, seeded, ExportStatus.READY.value, age_days=10)

        report = execute_policy(db, get_retention_policy("export-requests-cleanup"), storage=storage)

        assert report.success
        assert report.items_processed == 3
        assert report.items_deleted == 3
        assert report.storage_freed == 300
        db.expire_all()
        remaining = {e.id for e in db.query(ExportRequest).all()}
        assert remaining == {in_flight.id, recent.id}
        assert not any(storage.exists(k) for k in keys)

    def test_blob_failure_is_recorded_and_sweep_continues(self, db, storage, seeded):
        first = add_export(db, seeded, ExportStatus.READY.value, age_days=100, storage_key="exports/a.zip")
        second = add_export(db, seeded, ExportStatus.READY.value, age_days=100)
        first_id, second_id = first.id, second.id

        with patch.object(storage, "delete", side_effect=IOError("storage unavailable")):
            report = execute_policy(db, get_retention_policy("export-requests-cleanup"), storage=storage)

        assert not report.success
        assert report.items_processed == 2
        assert report.items_deleted == 1
        assert "storage unavailable" in report.errors[0]
        db.expire_all()
        assert db.get(ExportRequest, first_id) is not None
        assert db.get(ExportRequest, second_id) is None

    def test_scope_follows_project_status(self, db, storage, make_project):
        archived = make_project(status=ProjectStatus.ARCHIVED.value)
        add_export(db, archived, ExportStatus.READY.value, age_days=100)
        policy = replace(get_retention_policy("export-requests-cleanup"), apply_to_archived=False)

        report = execute_policy(db, policy, storage=storage)

        assert report.items_processed == 0
        assert db.query(ExportRequest).count() == 1


class TestTempFilesPolicy:
    def test_deletes_only_old_temp_files(self, db, storage, seeded):
        storage.upload("temp/upload-1.bin", b"12345")
        storage.upload("temp/nested/upload-2.bin", b"123")
        storage.upload(f"audio/{seeded.project_id}/keep.mp3", b"audio")
        policy = get_retention_policy("temp-files-cleanup")

        report = execute_policy(db, policy, storage=storage, now=utcnow() + timedelta(days=31))

        assert report.items_deleted == 2
        assert report.storage_freed == 8
        assert storage.list_objects("temp/") == []
        assert storage.exists(f"audio/{seeded.project_id}/keep.mp3")

    def test_recent_temp_files_kept(self, db, storage):
        storage.upload("temp/upload-1.bin", b"12345")

        report = execute_policy(db, get_retention_policy("temp-files-cleanup"), storage=storage)

        assert report.items_processed == 0
        assert storage.exists("temp/upload-1.bin")


class TestAnalyticsEventsPolicy:
    def test_drops_events_past_retention(self, db, storage):
        track_event(AnalyticsEventType.EXPORT_REQUESTED, timestamp=utcnow() - timedelta(days=800))
        track_event(AnalyticsEventType.EXPORT_REQUESTED, timestamp=utcnow() - timedelta(days=10))

        report = execute_policy(db, get_retention_policy("analytics-events-cleanup"), storage=storage)

        assert report.items_deleted == 1
        assert len(get_events()) == 1


class TestArchivedProjectsPolicy:
    def test_purges_old_archived_projects(self, db, storage, make_project):
        old_archived = make_project(status=ProjectStatus.ARCHIVED.value, age_days=2600, with_media=True)
        old_active = make_project(status=ProjectStatus.ACTIVE.value, age_days=2600)
        recent_archived = make_project(status=ProjectStatus.ARCHIVED.value, age_days=30)
        old_id = old_archived.project.id

        report = execute_policy(db, get_retention_policy("archived-projects-cleanup"), storage=storage)

        assert report.success
        assert report.items_deleted == 1
        assert report.storage_freed > 0
        db.expire_all()
        remaining = {p.id for p in db.query(Project).all()}
        assert old_id not in remaining
        assert {old_active.project.id, recent_archived.project.id} <= remaining

        events = get_events(AnalyticsEventType.PROJECT_DELETED_BY_RETENTION)
        assert len(events) == 1
        assert events[0].properties["projectId"] == str(old_id)
        assert events[0].properties["policy"] == "archived-projects-cleanup"

    def test_failed_purge_is_reported(self, db, storage, make_project):
        make_project(status=ProjectStatus.ARCHIVED.value, age_days=2600, with_media=True)

        with patch.object(storage, "delete", side_effect=IOError("storage unavailable")):
            report = execute_policy(db, get_retention_policy("archived-projects-cleanup"), storage=storage)

        assert report.items_processed == 1
        assert report.items_deleted == 0
        assert len(report.errors) == 1
        assert db.query(Project).count() == 1


class TestRowSweeps:
    def test_story_sweep_removes_interactions_and_blobs(self, db, storage, make_project):
        seeded = make_project(age_days=400, with_media=True)
        policy = replace(get_retention_policy("export-requests-cleanup"), data_types=("stories",))

        result = sweep_stories(db, storage, policy, cutoff=utcnow() - timedelta(days=365))

        assert result.items_deleted == 2
        assert result.storage_freed > 0
        assert db.query(Story).count() == 0
        assert db.query(Interaction).count() == 0
        assert not storage.exists(seeded.stories[0].audio_uri)

    def test_interaction_sweep(self, db, storage, make_project):
        make_project(age_days=400)
        policy = replace(get_retention_policy("export-requests-cleanup"), data_types=("interactions",))

        result = sweep_interactions(db, storage, policy, cutoff=utcnow() - timedelta(days=365))

        assert result.items_deleted == 2
        assert db.query(Interaction).count() == 0
        assert db.query(Story).count() == 2

    @pytest.mark.parametrize(
        "apply_to_archived,apply_to_active,expected_survivors",
        [
            (True, False, {"old-active", "new-archived", "new-active"}),
            (False, True, {"old-archived", "new-archived", "new-active"}),
            (True, True, {"new-archived", "new-active"}),
        ],
    )
    def test_chapter_summary_sweep_respects_scope(
        self, db, storage, make_project, apply_to_archived, apply_to_active, expected_survivors
    ):
        projects = {
            "old-archived": make_project(status=ProjectStatus.ARCHIVED.value, age_days=400),
            "old-active": make_project(age_days=400),
            "new-archived": make_project(status=ProjectStatus.ARCHIVED.value),
            "new-active": make_project(),
        }
        policy = replace(
            get_retention_policy("export-requests-cleanup"),
            data_types=("chapterSummaries",),
            apply_to_archived=apply_to_archived,
            apply_to_active=apply_to_active,
        )

        result = sweep_chapter_summaries(db, storage, policy, cutoff=utcnow() - timedelta(days=365))

        assert result.items_processed == 4 - len(expected_survivors)
        assert result.items_deleted == result.items_processed
        assert result.errors == []
        db.expire_all()
        surviving_projects = {row.project_id for row in db.query(ChapterSummary).all()}
        assert surviving_projects == {projects[label].project.id for label in expected_survivors}
        assert db.query(Story).count() == 8


class TestExecutePolicy:
    def test_invalid_policy_is_skipped(self, db, storage, seeded):
        add_export(db, seeded, ExportStatus.READY.value, age_days=100)
        policy = replace(get_retention_policy("export-requests-cleanup"), retention_period_days=0)

        report = execute_policy(db, policy, storage=storage)

        assert not report.success
        assert report.errors[0].startswith("Invalid policy")
        assert db.query(ExportRequest).count() == 1

    def test_crashing_sweep_is_reported_not_raised(self, db, storage):
        policy = get_retention_policy("temp-files-cleanup")

        with patch.object(storage, "list_older_than", side_effect=IOError("listing failed")):
            report = execute_policy(db, policy, storage=storage)

        assert report.errors == ["Failed to sweep tempFiles: listing failed"]

    def test_all_policies_report_in_order(self, db, storage):
        reports = execute_all_policies(db, storage=storage)

        assert [r.policy.name for r in reports] == [
            "archived-projects-cleanup",
            "export-requests-cleanup",
            "temp-files-cleanup",
            "analytics-events-cleanup",
        ]
        assert all(r.success for r in reports)

    def test_disabled_policy_skipped(self, db, storage):
        policies = [
            replace(get_retention_policy("temp-files-cleanup"), enabled=False),
            get_retention_policy("analytics-events-cleanup"),
        ]

        reports = execute_all_policies(db, storage=storage, policies=policies)

        assert [r.policy.name for r in reports] == ["analytics-events-cleanup"]


class TestExpireReadyExports:
    def test_past_expiry_becomes_expired(self, db, storage, seeded):
        key = f"exports/{seeded.project_id}/e.zip"
        storage.upload(key, b"zip")
        expired = add_export(
            db,
            seeded,
            ExportStatus.READY.value,
            age_days=40,
            storage_key=key,
            download_url="/v1/exports/x/download",
            expires_at=utcnow() - timedelta(days=1),
        )
        valid = add_export(
            db,
            seeded,
            ExportStatus.READY.value,
            age_days=1,
            download_url="/v1/exports/y/download",
            expires_at=utcnow() + timedelta(days=29),
        )

        result = expire_ready_exports(db, storage=storage)

        assert result.items_deleted == 1
        db.expire_all()
        row = db.get(ExportRequest, expired.id)
        assert row.status == ExportStatus.EXPIRED.value
        assert row.download_url is None
        assert row.expires_at is None
        assert row.storage_key == key
        assert not storage.exists(key)
        assert db.get(ExportRequest, valid.id).status == ExportStatus.READY.value

    def test_blob_failure_still_expires_row(self, db, storage, seeded):
        export = add_export(
            db,
            seeded,
            ExportStatus.READY.value,
            age_days=40,
            storage_key="exports/x.zip",
            expires_at=utcnow() - timedelta(days=1),
        )

        with patch.object(storage, "delete", side_effect=IOError("storage unavailable")):
            result = expire_ready_exports(db, storage=storage)

        assert result.items_deleted == 1
        assert len(result.errors) == 1
        db.expire_all()
        assert db.get(ExportRequest, export.id).status == ExportStatus.EXPIRED.value
