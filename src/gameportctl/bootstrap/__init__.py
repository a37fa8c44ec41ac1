"""Helper utilities used by the account and directory provisioning stage."""
from __future__ import annotations

from .filesystem import (
    DirectoryAction,
    DirectoryPlan,
    DirectorySpec,
    apply_directory_plan,
    ensure_directories,
    plan_directories,
)
from .service_accounts import (
    ServiceAccountAction,
    ServiceAccountPlan,
    ServiceAccountSpec,
    ServiceAccountStatus,
    apply_service_account_plan,
    ensure_account,
    inspect_service_account,
    plan_service_account,
)

__all__ = [
    # service account helpers
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "inspect_service_account",
    "plan_service_account",
    "apply_service_account_plan",
    "ensure_account",
    # filesystem helpers
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "plan_directories",
    "apply_directory_plan",
    "ensure_directories",
]
