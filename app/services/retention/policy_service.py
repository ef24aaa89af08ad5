# app/services/retention/policy_service.py
"""
Retention policy definitions.

Policies are static configuration: a fixed in-process list, validated by
validate_policy() and looked up by name. Nothing here touches the database.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from app.constants import RetentionLimits
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class DataType(str, Enum):
    """Kinds of data a policy can sweep."""

    PROJECTS = "projects"
    STORIES = "stories"
    INTERACTIONS = "interactions"
    CHAPTER_SUMMARIES = "chapterSummaries"
    EXPORT_REQUESTS = "exportRequests"
    TEMP_FILES = "tempFiles"
    ANALYTICS_EVENTS = "analyticsEvents"


VALID_DATA_TYPES = {dt.value for dt in DataType}


@dataclass(frozen=True)
class RetentionPolicy:
    """How long one category of data is kept."""

    name: str
    description: str
    retention_period_days: int
    apply_to_archived: bool
    apply_to_active: bool
    data_types: tuple[str, ...] = field(default_factory=tuple)
    enabled: bool = True

    def cutoff(self, now: datetime | None = None) -> datetime:
        return (now or utcnow()) - timedelta(days=self.retention_period_days)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["data_types"] = list(self.data_types)
        return data


# Default policy configurations
DEFAULT_POLICIES = (
    RetentionPolicy(
        name="archived-projects-cleanup",
        description="Delete archived projects and all their content after 7 years",
        retention_period_days=7 * 365,
        apply_to_archived=True,
        apply_to_active=False,
        data_types=(DataType.PROJECTS.value,),
    ),
    RetentionPolicy(
        name="export-requests-cleanup",
        description="Delete finished export requests and their files after 90 days",
        retention_period_days=90,
        apply_to_archived=True,
        apply_to_active=True,
        data_types=(DataType.EXPORT_REQUESTS.value,),
    ),
    RetentionPolicy(
        name="temp-files-cleanup",
        description="Delete temporary uploads after 30 days",
        retention_period_days=30,
        apply_to_archived=True,
        apply_to_active=True,
        data_types=(DataType.TEMP_FILES.value,),
    ),
    RetentionPolicy(
        name="analytics-events-cleanup",
        description="Drop analytics events after 2 years",
        retention_period_days=2 * 365,
        apply_to_archived=True,
        apply_to_active=True,
        data_types=(DataType.ANALYTICS_EVENTS.value,),
    ),
)


def validate_policy(policy: RetentionPolicy) -> list[str]:
    """
    Check a policy for problems.

    Returns:
        List of problems; empty when the policy is valid
    """
    problems = []

    if not policy.name or not policy.name.strip():
        problems.append("Policy name is required")

    if not (RetentionLimits.MIN_PERIOD_DAYS <= policy.retention_period_days <= RetentionLimits.MAX_PERIOD_DAYS):
        problems.append(
            f"Retention period must be between {RetentionLimits.MIN_PERIOD_DAYS} "
            f"and {RetentionLimits.MAX_PERIOD_DAYS} days"
        )

    if not policy.data_types:
        problems.append("At least one data type must be specified")
    else:
        invalid = [dt for dt in policy.data_types if dt not in VALID_DATA_TYPES]
        if invalid:
            problems.append(f"Invalid data types: {', '.join(invalid)}")

    if not policy.apply_to_archived and not policy.apply_to_active:
        problems.append("Policy must apply to archived projects, active projects, or both")

    return problems


def get_retention_policies(enabled_only: bool = False) -> list[RetentionPolicy]:
    """All configured policies."""
    policies = list(DEFAULT_POLICIES)
    if enabled_only:
        policies = [p for p in policies if p.enabled]
    return policies


def get_retention_policy(name: str) -> Optional[RetentionPolicy]:
    """Get a retention policy by name."""
    for policy in DEFAULT_POLICIES:
        if policy.name == name:
            return policy
    return None


def next_execution_time(now: datetime | None = None) -> datetime:
    """Next daily run at RetentionLimits.DAILY_RUN_HOUR_UTC."""
    now = now or utcnow()
    run = now.replace(hour=RetentionLimits.DAILY_RUN_HOUR_UTC, minute=0, second=0, microsecond=0)
    if run <= now:
        run += timedelta(days=1)
    return run


def get_retention_status(now: datetime | None = None) -> dict[str, Any]:
    """Configured policies, how many are enabled, and when the next run is due."""
    policies = get_retention_policies()
    return {
        "policies": [p.to_dict() for p in policies],
        "total_policies": len(policies),
        "enabled_policies": len([p for p in policies if p.enabled]),
        "next_execution": next_execution_time(now),
    }
