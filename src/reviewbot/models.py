"""Domain models for reviewer assignment and merge-gate checks.

These dataclasses model the reviewer pool loaded from configuration and the
subset of GitHub pull request payload fields the decision engine needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

# Review states as reported by the GitHub API.
APPROVED = "APPROVED"
CHANGES_REQUESTED = "CHANGES_REQUESTED"
COMMENTED = "COMMENTED"
DISMISSED = "DISMISSED"

REVIEW_STATES = frozenset({APPROVED, CHANGES_REQUESTED, COMMENTED, DISMISSED})

# Repository slugs with team-specific review pools.
MAIN_REPO = "teleport"
CLOUD_REPO = "cloud"

# Teams. An empty team string means the default (core) pool.
CORE_TEAM = "Core"
CLOUD_TEAM = "Cloud"
INTERNAL_TEAM = "Internal"

# Base branches of the cloud repository that deploy on merge.
CLOUD_PROD_BRANCH = "prod"
CLOUD_STAGING_BRANCH = "staging"

DEFAULT_APPROVER_COUNT = 2


@dataclass(slots=True)
class Reviewer:
    """A code or docs reviewer from the reviewers configuration document."""

    team: str = ""
    owner: bool = False
    preferred_reviewer_for: List[str] = field(default_factory=list)
    # Only auto-assigned when one of ``preferred_reviewer_for`` matches.
    preferred_only: bool = False

    def in_team(self, team: str) -> bool:
        """Return True if the reviewer belongs to ``team``; untagged reviewers are Core."""
        return (self.team or CORE_TEAM) == team

    def prefers(self, path: str) -> bool:
        """Return True if ``path`` falls under one of the reviewer's preferred prefixes."""
        return any(path.startswith(prefix) for prefix in self.preferred_reviewer_for)


@dataclass(slots=True)
class Review:
    """One submitted pull request review."""

    author: str
    state: str
    submitted_at: Optional[datetime] = None


@dataclass(slots=True)
class PullRequestFile:
    """A file changed by a pull request."""

    name: str
    additions: int = 0
    deletions: int = 0
    status: str = ""


@dataclass(slots=True)
class PullRequest:
    """The pull request fields used by the do-not-merge and backport logic.

    Fields prefixed with ``unsafe_`` are attacker controlled and must not be
    used to build URLs or make access decisions.
    """

    author: str
    repository: str
    number: int = 0
    unsafe_head: str = ""
    unsafe_base: str = ""
    unsafe_title: str = ""
    unsafe_body: str = ""
    unsafe_labels: List[str] = field(default_factory=list)
    fork: bool = False


@dataclass(slots=True)
class Changes:
    """Classification of a pull request changeset, derived at check time."""

    docs: bool = False
    code: bool = False
    large: bool = False
    release: bool = False
    approver_count: int = DEFAULT_APPROVER_COUNT


@dataclass(slots=True)
class Environment:
    """Identity of the pull request the workflow is running for.

    ``unsafe_head`` and ``unsafe_base`` are branch names taken from the event
    payload and can be attacker controlled.
    """

    organization: str
    repository: str
    number: int = 0
    author: str = ""
    unsafe_head: str = ""
    unsafe_base: str = ""
    run_id: int = 0
    additions: int = 0
    deletions: int = 0

    def is_cloud_deploy_branch(self) -> bool:
        """Return True when targeting a deploy branch of the cloud repository."""
        return self.repository == CLOUD_REPO and self.unsafe_base in (
            CLOUD_PROD_BRANCH,
            CLOUD_STAGING_BRANCH,
        )

    def team(self) -> str:
        """Return the team that owns reviews in this repository."""
        if self.repository == CLOUD_REPO:
            return CLOUD_TEAM
        return CORE_TEAM
