"""Naming conventions shared by identities and their ServiceAccounts."""

from __future__ import annotations


def extract_app_key(display_name: str) -> str:
    """Return the application segment of an identity name.

    ``id-service-appname-dv-azunea-001`` -> ``appname``. Names with fewer than
    four dash-separated segments are malformed and yield "".
    """
    parts = (display_name or "").split("-")
    if len(parts) < 4:
        return ""
    return parts[2]


def binding_name(app_key: str, prefix: str = "workload-identity-") -> str:
    return f"{prefix}{app_key}"


def grant_selector(app_key: str) -> str:
    """Label selector matching the RoleAssignments of one application."""
    return f"application={app_key},type=roleassignment"
