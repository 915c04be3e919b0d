"""GitHub Actions event environment for the review bot."""

from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigurationError
from .models import Environment

GITHUB_EVENT_PATH = "GITHUB_EVENT_PATH"
GITHUB_REPOSITORY = "GITHUB_REPOSITORY"
GITHUB_RUN_ID = "GITHUB_RUN_ID"


def _read_event(event_path: str) -> Dict[str, Any]:
    try:
        with open(event_path, "r", encoding="utf-8") as handle:
            event = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Could not read GitHub event from '{event_path}'.") from exc

    if not isinstance(event, dict):
        raise ConfigurationError(f"GitHub event in '{event_path}' is not a JSON object.")
    return event


def _read_repository() -> Tuple[str, str]:
    repository = os.getenv(GITHUB_REPOSITORY, "")
    if not repository:
        raise ConfigurationError(f"{GITHUB_REPOSITORY} environment variable missing.")

    parts = repository.split("/")
    if len(parts) != 2:
        raise ConfigurationError("Failed to parse organization and/or repository.")
    if not parts[0] or not parts[1]:
        raise ConfigurationError("Invalid organization and/or repository.")
    return parts[0], parts[1]


def load_environment(event_path: Optional[str] = None) -> Environment:
    """Build the pull request environment from the workflow event.

    Events without an action (for example scheduled runs) only carry the
    organization and repository, read from ``GITHUB_REPOSITORY``.

    Raises:
        ConfigurationError: If the event or environment variables are missing
            or malformed.
    """
    path = event_path or os.getenv(GITHUB_EVENT_PATH, "")
    if not path:
        raise ConfigurationError(f"{GITHUB_EVENT_PATH} environment variable missing.")

    event = _read_event(path)
    if not event.get("action"):
        organization, repository = _read_repository()
        return Environment(organization=organization, repository=repository)

    try:
        run_id = int(os.getenv(GITHUB_RUN_ID, ""))
    except ValueError as exc:
        raise ConfigurationError(f"{GITHUB_RUN_ID} environment variable is not an integer.") from exc

    pull_request = event.get("pull_request") or {}
    repository = event.get("repository") or {}
    organization = (repository.get("owner") or {}).get("login")
    if not pull_request or not organization or not repository.get("name"):
        raise ConfigurationError("GitHub event is missing pull request or repository fields.")

    return Environment(
        organization=str(organization),
        repository=str(repository["name"]),
        number=int(pull_request.get("number") or 0),
        author=str((pull_request.get("user") or {}).get("login") or ""),
        unsafe_head=str((pull_request.get("head") or {}).get("ref") or ""),
        unsafe_base=str((pull_request.get("base") or {}).get("ref") or ""),
        run_id=run_id,
        additions=int(pull_request.get("additions") or 0),
        deletions=int(pull_request.get("deletions") or 0),
    )
