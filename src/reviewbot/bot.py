"""Review bot workflows.

A ``Bot`` is created once per workflow run. It fetches the pull request's
reviews, files and review requests from GitHub, hands them to the decision
engine in :mod:`reviewbot.review`, and writes review requests, comments and
labels back.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

from .changes import classify_changes, pr_size
from .errors import ApiError, BackportError, ConfigurationError, DoNotMergeError
from .github_client import GitHubClient
from .models import APPROVED, Environment, PullRequest, PullRequestFile, Review
from .review import Assignments, reviews_by_author

logger = logging.getLogger(__name__)

DO_NOT_MERGE_LABEL = "do-not-merge"

# Base branches that receive backports.
BACKPORT_BRANCH_PREFIX = "branch/"

LARGE_PR_COMMENT = (
    "@{author} - this PR will require admin approval to merge due to its size. "
    "Consider breaking it up into a series smaller changes."
)

_ORIGINAL_NUMBER_IN_TITLE = re.compile(r"#(\d+)")
_ORIGINAL_URL_IN_BODY = re.compile(r"https://github\.com/[\w.-]+/[\w.-]+/pull/(\d+)")

# Labels attached when a changed file starts with the prefix.
LABEL_PREFIXES: Dict[str, List[str]] = {
    "bpf/": ["bpf"],
    "rfd/": ["rfd"],
    "examples/chart": ["helm"],
    "lib/bpf/": ["bpf"],
    "lib/events": ["audit-log"],
    "lib/kube": ["kubernetes-access"],
    "lib/tbot/": ["machine-id"],
    "lib/srv/desktop": ["desktop-access"],
    "lib/srv/desktop/rdp": ["desktop-access", "rdp"],
    "lib/srv/app/": ["application-access"],
    "lib/srv/db": ["database-access"],
    "lib/web/desktop.go": ["desktop-access"],
    "tool/tctl/": ["tctl"],
    "tool/tsh/": ["tsh"],
    "tool/tbot/": ["machine-id"],
    "web/": ["ui"],
}


def _is_bot(login: str) -> bool:
    return "[bot]" in login


class Bot:
    """Runs the assign, check and label workflows for one pull request."""

    def __init__(
        self,
        github: GitHubClient,
        environment: Environment,
        assignments: Optional[Assignments] = None,
    ) -> None:
        self._github = github
        self._environment = environment
        self._assignments = assignments
        self._org_members: Dict[str, bool] = {}

    def _require_assignments(self) -> Assignments:
        if self._assignments is None:
            raise ConfigurationError("This workflow requires the reviewers document.")
        return self._assignments

    def _is_org_member(self, login: str) -> bool:
        if login not in self._org_members:
            self._org_members[login] = self._github.is_org_member(
                login, self._environment.organization
            )
        return self._org_members[login]

    def is_internal(self, login: Optional[str] = None) -> bool:
        """Return True if ``login`` (default: the PR author) is an internal contributor.

        Known bots and listed reviewers are resolved locally; anyone else is
        looked up in the organization's member list.
        """
        login = login or self._environment.author
        if self._assignments is not None and self._assignments.is_internal(login):
            return True
        return self._is_org_member(login)

    def check(self) -> None:
        """Check that the required reviewers have approved the pull request.

        Internal authors need approvals from both reviewer sets; external
        authors need two admin approvals. On success, review requests that
        are no longer needed are removed.

        Raises:
            DoNotMergeError: If the pull request carries the do-not-merge label.
            ReviewError: If review policy is not yet satisfied.
            ApiError: If GitHub could not be queried.
        """
        assignments = self._require_assignments()
        environment = self._environment

        self._check_do_not_merge()

        # Independent reads; the first failure aborts the check.
        with ThreadPoolExecutor(max_workers=2) as executor:
            reviews_future = executor.submit(
                self._github.list_reviews,
                environment.organization,
                environment.repository,
                environment.number,
            )
            files_future = executor.submit(
                self._github.list_files,
                environment.organization,
                environment.repository,
                environment.number,
            )
            reviews = reviews_future.result()
            files = files_future.result()

        if not self.is_internal():
            assignments.check_external(environment.author, reviews)
            return

        changes = classify_changes(
            environment, files, assignments.single_approver_paths(environment.repository)
        )
        if changes.large:
            self._comment_large_pr()

        assignments.check_internal(environment, reviews, changes, files)

        try:
            self._dismiss_reviewers(reviews)
        except ApiError as exc:
            logger.warning(
                "Check: failed to dismiss reviewers",
                extra={"number": environment.number, "error": str(exc)},
            )

    def assign(self) -> None:
        """Request reviews for the pull request.

        Backports request the reviewers who approved the original change.
        """
        environment = self._environment

        if environment.unsafe_base.startswith(BACKPORT_BRANCH_PREFIX):
            logger.info("Assign: found backport branch", extra={"base": environment.unsafe_base})
            reviewers = self.backport_reviewers()
        else:
            assignments = self._require_assignments()
            files = self._github.list_files(
                environment.organization, environment.repository, environment.number
            )
            if self.is_internal():
                changes = classify_changes(
                    environment, files, assignments.single_approver_paths(environment.repository)
                )
                reviewers = assignments.get(environment, changes, files)
            else:
                reviewers = assignments.get_admin_reviewers(environment.author)

        if not reviewers:
            logger.info("Assign: no reviewers to request", extra={"number": environment.number})
            return

        logger.info("Assign: requesting reviews", extra={"reviewers": reviewers})
        self._github.request_reviewers(
            environment.organization, environment.repository, environment.number, reviewers
        )

    def backport_reviewers(self) -> List[str]:
        """Return the reviewers for a backport pull request.

        These are the backport's own requested reviewers plus everyone who
        approved the original pull request, restricted to current org members
        and excluding bots and the author.

        Raises:
            BackportError: If the original pull request cannot be found.
        """
        environment = self._environment
        pull = self._github.get_pull_request(
            environment.organization, environment.repository, environment.number
        )

        original = _find_original_number(pull)
        if original is None:
            raise BackportError(
                "could not find the original pull request for backport "
                f"{environment.organization}/{environment.repository}#{environment.number}"
            )

        original_reviews = self._github.list_reviews(
            environment.organization, environment.repository, original
        )
        approvers = [
            login for login, state in reviews_by_author(original_reviews).items() if state == APPROVED
        ]
        requested = self._github.list_reviewers(
            environment.organization, environment.repository, environment.number
        )

        reviewers: List[str] = []
        for login in dict.fromkeys(requested + approvers):
            if login == environment.author or _is_bot(login):
                continue
            if not self._is_org_member(login):
                logger.info(
                    "Assign: skipping reviewer outside the organization",
                    extra={"reviewer": login},
                )
                continue
            reviewers.append(login)
        return reviewers

    def label(self) -> None:
        """Attach size, backport, documentation and area labels to the pull request."""
        environment = self._environment
        files = self._github.list_files(
            environment.organization, environment.repository, environment.number
        )

        labels = self.labels(files)
        if not labels:
            return

        logger.info("Label: attaching labels", extra={"labels": labels})
        self._github.add_labels(
            environment.organization, environment.repository, environment.number, labels
        )

    def labels(self, files: Sequence[PullRequestFile]) -> List[str]:
        """Return the labels for a pull request changing ``files``."""
        labels = [pr_size(files)]

        # The branch name is unsafe, but here it only picks a label.
        if self._environment.unsafe_base.startswith(BACKPORT_BRANCH_PREFIX):
            labels.append("backport")

        if classify_changes(self._environment, files).docs:
            labels.append("documentation")

        for file in files:
            if file.name.startswith("vendor/"):
                continue
            for prefix, names in LABEL_PREFIXES.items():
                if file.name.startswith(prefix):
                    labels.extend(names)

        return sorted(set(labels))

    def _check_do_not_merge(self) -> None:
        environment = self._environment
        pull = self._github.get_pull_request(
            environment.organization, environment.repository, environment.number
        )
        if DO_NOT_MERGE_LABEL in pull.unsafe_labels:
            raise DoNotMergeError(f"the pull request is marked as {DO_NOT_MERGE_LABEL}")

    def _comment_large_pr(self) -> None:
        """Warn the author once that a large PR needs an admin approval."""
        environment = self._environment
        comment = LARGE_PR_COMMENT.format(author=environment.author)

        try:
            comments = self._github.list_comments(
                environment.organization, environment.repository, environment.number
            )
        except ApiError as exc:
            logger.warning(
                "Check: failed to list comments",
                extra={"number": environment.number, "error": str(exc)},
            )
            comments = []
        if comment in comments:
            return

        self._github.create_comment(
            environment.organization, environment.repository, environment.number, comment
        )

    def _dismiss_reviewers(self, reviews: Sequence[Review]) -> None:
        """Remove review requests that are no longer needed on an approved PR."""
        environment = self._environment
        requested = self._github.list_reviewers(
            environment.organization, environment.repository, environment.number
        )

        reviewers = self._require_assignments().reviewers_to_dismiss(
            requested, reviews, is_internal=self.is_internal
        )
        if not reviewers:
            return

        logger.info("Check: dismissing review requests", extra={"reviewers": reviewers})
        self._github.dismiss_reviewers(
            environment.organization, environment.repository, environment.number, reviewers
        )


def _find_original_number(pull: PullRequest) -> Optional[int]:
    """Find the original PR number in a backport's title or body."""
    match = _ORIGINAL_NUMBER_IN_TITLE.search(pull.unsafe_title)
    if match is None:
        match = _ORIGINAL_URL_IN_BODY.search(pull.unsafe_body)
    if match is None:
        return None
    return int(match.group(1))
