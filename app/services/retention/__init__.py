# app/services/retention/__init__.py
"""
Retention management for the archival lifecycle.

Services:
- policy_service: static policy list, validation, schedule status
- sweep_service: per-type sweeps, policy execution, export expiry
- purge_service: atomic cascading deletion of a whole project
"""

from app.services.retention.policy_service import (
    DEFAULT_POLICIES,
    DataType,
    RetentionPolicy,
    get_retention_policies,
    get_retention_policy,
    get_retention_status,
    validate_policy,
)
from app.services.retention.purge_service import (
    PurgeResult,
    delete_project_completely,
)
from app.services.retention.sweep_service import (
    RetentionReport,
    SweepResult,
    execute_all_policies,
    execute_policy,
    expire_ready_exports,
)

__all__ = [
    # Policy
    "RetentionPolicy",
    "DataType",
    "DEFAULT_POLICIES",
    "get_retention_policies",
    "get_retention_policy",
    "get_retention_status",
    "validate_policy",
    # Sweep
    "RetentionReport",
    "SweepResult",
    "execute_policy",
    "execute_all_policies",
    "expire_ready_exports",
    # Purge
    "PurgeResult",
    "delete_project_completely",
]
