# tests/unit/test_retention/test_policy_service.py
"""Unit tests for retention policy service."""

from dataclasses import replace
from datetime import datetime

import pytest


class TestDefaultPolicies:
    """Tests for the configured policy list."""

    def test_four_policies_configured(self):
        from app.services.retention.policy_service import get_retention_policies

        names = [p.name for p in get_retention_policies()]

        assert names == [
            "archived-projects-cleanup",
            "export-requests-cleanup",
            "temp-files-cleanup",
            "analytics-events-cleanup",
        ]

    @pytest.mark.parametrize(
        "name,days,archived,active",
        [
            ("archived-projects-cleanup", 2555, True, False),
            ("export-requests-cleanup", 90, True, True),
            ("temp-files-cleanup", 30, True, True),
            ("analytics-events-cleanup", 730, True, True),
        ],
    )
    def test_policy_values(self, name, days, archived, active):
        from app.services.retention.policy_service import get_retention_policy

        policy = get_retention_policy(name)

        assert policy.retention_period_days == days
        assert policy.apply_to_archived is archived
        assert policy.apply_to_active is active
        assert policy.enabled is True

    def test_every_default_policy_is_valid(self):
        from app.services.retention.policy_service import get_retention_policies, validate_policy

        for policy in get_retention_policies():
            assert validate_policy(policy) == [], policy.name

    def test_unknown_policy_returns_none(self):
        from app.services.retention.policy_service import get_retention_policy

        assert get_retention_policy("nonexistent") is None


class TestValidatePolicy:
    """Tests for validate_policy()."""

    @pytest.fixture
    def policy(self):
        from app.services.retention.policy_service import get_retention_policy

        return get_retention_policy("export-requests-cleanup")

    @pytest.mark.parametrize("days", [0, -1, 3651])
    def test_period_out_of_bounds(self, policy, days):
        from app.services.retention.policy_service import validate_policy

        problems = validate_policy(replace(policy, retention_period_days=days))

        assert any("between 1 and 3650 days" in p for p in problems)

    @pytest.mark.parametrize("days", [1, 3650])
    def test_period_bounds_inclusive(self, policy, days):
        from app.services.retention.policy_service import validate_policy

        assert validate_policy(replace(policy, retention_period_days=days)) == []

    def test_empty_data_types(self, policy):
        from app.services.retention.policy_service import validate_policy

        problems = validate_policy(replace(policy, data_types=()))

        assert "At least one data type must be specified" in problems

    def test_unknown_data_type(self, policy):
        from app.services.retention.policy_service import validate_policy

        problems = validate_policy(replace(policy, data_types=("exportRequests", "emails")))

        assert problems == ["Invalid data types: emails"]

    def test_must_apply_somewhere(self, policy):
        from app.services.retention.policy_service import validate_policy

        problems = validate_policy(replace(policy, apply_to_archived=False, apply_to_active=False))

        assert any("archived projects, active projects, or both" in p for p in problems)

    def test_blank_name(self, policy):
        from app.services.retention.policy_service import validate_policy

        assert "Policy name is required" in validate_policy(replace(policy, name="  "))


class TestRetentionStatus:
    """Tests for get_retention_status() and scheduling."""

    def test_next_execution_later_today(self):
        from app.services.retention.policy_service import next_execution_time

        assert next_execution_time(datetime(2024, 5, 1, 1, 0)) == datetime(2024, 5, 1, 2, 0)

    def test_next_execution_tomorrow(self):
        from app.services.retention.policy_service import next_execution_time

        assert next_execution_time(datetime(2024, 5, 1, 2, 0)) == datetime(2024, 5, 2, 2, 0)
        assert next_execution_time(datetime(2024, 5, 1, 23, 59)) == datetime(2024, 5, 2, 2, 0)

    def test_status_summary(self):
        from app.services.retention.policy_service import get_retention_status

        status = get_retention_status(datetime(2024, 5, 1, 12, 0))

        assert status["total_policies"] == 4
        assert status["enabled_policies"] == 4
        assert status["next_execution"] == datetime(2024, 5, 2, 2, 0)
        assert status["policies"][0]["data_types"] == ["projects"]

    def test_cutoff(self):
        from app.services.retention.policy_service import get_retention_policy

        policy = get_retention_policy("export-requests-cleanup")

        assert policy.cutoff(datetime(2024, 5, 1)) == datetime(2024, 2, 1)
