"""Configuration parsing and validation for the GitHub review bot."""

from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass
from typing import Optional

from .errors import AuthenticationError, ConfigurationError

ASSIGN_WORKFLOW = "assign"
CHECK_WORKFLOW = "check"
LABEL_WORKFLOW = "label"

WORKFLOWS = (ASSIGN_WORKFLOW, CHECK_WORKFLOW, LABEL_WORKFLOW)

# Workflows that consult the reviewer pool.
REVIEWER_WORKFLOWS = (ASSIGN_WORKFLOW, CHECK_WORKFLOW)


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used by the review bot."""

    workflow: str
    token: str
    reviewers: str
    local: bool = False
    org: Optional[str] = None
    repo: Optional[str] = None
    pr_number: Optional[int] = None


def load_config(
    workflow: str,
    token: Optional[str] = None,
    reviewers: Optional[str] = None,
    local: bool = False,
    org: Optional[str] = None,
    repo: Optional[str] = None,
    pr_number: Optional[int] = None,
) -> Config:
    """Build and validate application configuration.

    Args:
        workflow: Name of the workflow to run.
        token: GitHub token; falls back to ``GITHUB_TOKEN``.
        reviewers: Base64 encoded JSON reviewers document.
        local: Run against a pull request named on the command line instead
            of the GitHub Actions event.
        org: GitHub organization (local mode only).
        repo: GitHub repository (local mode only).
        pr_number: Pull request number (local mode only).

    Returns:
        A validated ``Config`` instance with the reviewers document decoded.

    Raises:
        ConfigurationError: If the workflow is unknown, the reviewers document
            is missing or not valid base64, or local mode lacks its target.
        AuthenticationError: If no GitHub token is configured.
    """
    if workflow not in WORKFLOWS:
        raise ConfigurationError(
            f"Unknown workflow '{workflow}': expected one of {', '.join(WORKFLOWS)}."
        )

    resolved_token = (token or os.getenv("GITHUB_TOKEN", "")).strip()
    if not resolved_token:
        raise AuthenticationError(
            "Missing required GitHub token. "
            "Pass --token or set the 'GITHUB_TOKEN' environment variable."
        )

    decoded_reviewers = ""
    if reviewers:
        try:
            decoded_reviewers = base64.b64decode(reviewers, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ConfigurationError("Invalid value for 'reviewers': expected base64 encoded JSON.") from exc
    elif workflow in REVIEWER_WORKFLOWS and not local:
        raise ConfigurationError(f"The '{workflow}' workflow requires the reviewers document.")

    if local and (not org or not repo or not pr_number):
        raise ConfigurationError("Local mode requires --org, --repo and --pr.")

    return Config(
        workflow=workflow,
        token=resolved_token,
        reviewers=decoded_reviewers,
        local=local,
        org=org,
        repo=repo,
        pr_number=pr_number,
    )
