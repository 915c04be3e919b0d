"""Reviewer assignment and merge-gate approval checks.

This module holds the decision engine behind the ``assign`` and ``check``
workflows:
- Partitioning code reviewers into an owner set (A) and a non-owner set (B).
- Selecting docs reviewers, folding in preferred code reviewers by path.
- Picking which reviewers to request, with an injectable random selector.
- Validating the latest review of each author against the review policy.
- Working out which pending review requests are redundant after approval.

Nothing here performs I/O. Reviews, files and org membership are fetched by
the caller and passed in.
"""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .errors import (
    AdminApprovalRequiredError,
    AdminApprovalRequiredForSizeError,
    ConfigurationError,
    DocsApprovalRequiredError,
    EachSetApprovalRequiredError,
    ExternalApprovalRequiredError,
    ReleaseApprovalRequiredError,
)
from .models import (
    APPROVED,
    CLOUD_REPO,
    COMMENTED,
    CORE_TEAM,
    INTERNAL_TEAM,
    REVIEW_STATES,
    Changes,
    Environment,
    PullRequestFile,
    Review,
    Reviewer,
)

logger = logging.getLogger(__name__)

# Automation accounts whose pull requests are reviewed as internal.
DEPENDABOT = "dependabot[bot]"
DEPENDABOT_BATCHER = "dependabot-batcher[bot]"
POST_RELEASE_BOT = "post-release-bot[bot]"
RENOVATE_BOT_PUBLIC = "renovate[bot]"
RENOVATE_BOT_PRIVATE = "renovate-private[bot]"

BOT_AUTHORS = frozenset(
    {
        DEPENDABOT,
        DEPENDABOT_BATCHER,
        POST_RELEASE_BOT,
        RENOVATE_BOT_PUBLIC,
        RENOVATE_BOT_PRIVATE,
    }
)

# Returns an index in ``[0, n)`` for a candidate list of length ``n``.
Selector = Callable[[int], int]


@dataclass(slots=True)
class ReviewConfig:
    """Reviewer pool configuration loaded from the reviewers JSON document."""

    code_reviewers: Dict[str, Reviewer] = field(default_factory=dict)
    code_reviewers_omit: FrozenSet[str] = frozenset()
    docs_reviewers: Dict[str, Reviewer] = field(default_factory=dict)
    docs_reviewers_omit: FrozenSet[str] = frozenset()
    admins: List[str] = field(default_factory=list)
    release_reviewers: List[str] = field(default_factory=list)
    single_approver_paths: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReviewConfig":
        """Build a configuration from the decoded reviewers document.

        Missing sections default to empty. Omission sections may be either an
        object (only keys are used) or a list of logins.

        Raises:
            ConfigurationError: If a section has the wrong shape.
        """
        return cls(
            code_reviewers=_parse_reviewers("codeReviewers", data.get("codeReviewers")),
            code_reviewers_omit=_parse_omit("codeReviewersOmit", data.get("codeReviewersOmit")),
            docs_reviewers=_parse_reviewers("docsReviewers", data.get("docsReviewers")),
            docs_reviewers_omit=_parse_omit("docsReviewersOmit", data.get("docsReviewersOmit")),
            admins=_parse_logins("admins", data.get("admins")),
            release_reviewers=_parse_logins("releaseReviewers", data.get("releaseReviewers")),
            single_approver_paths=_parse_paths(
                "singleApproverPaths", data.get("singleApproverPaths")
            ),
        )


def _parse_reviewers(section: str, value: Any) -> Dict[str, Reviewer]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Invalid '{section}': expected an object keyed by login.")

    reviewers: Dict[str, Reviewer] = {}
    for login, item in value.items():
        item = item or {}
        if not isinstance(item, dict):
            raise ConfigurationError(f"Invalid '{section}' entry for '{login}': expected an object.")
        reviewers[str(login)] = Reviewer(
            team=str(item.get("team") or ""),
            owner=bool(item.get("owner", False)),
            preferred_reviewer_for=_parse_logins(
                f"{section}.{login}.preferredReviewerFor", item.get("preferredReviewerFor")
            ),
            preferred_only=bool(item.get("preferredOnly", False)),
        )
    return reviewers


def _parse_omit(section: str, value: Any) -> FrozenSet[str]:
    if value is None:
        return frozenset()
    if isinstance(value, (dict, list)):
        return frozenset(str(login) for login in value)
    raise ConfigurationError(f"Invalid '{section}': expected an object or a list of logins.")


def _parse_logins(section: str, value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigurationError(f"Invalid '{section}': expected a list.")
    return [str(item) for item in value]


def _parse_paths(section: str, value: Any) -> Dict[str, List[str]]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Invalid '{section}': expected an object keyed by repository.")
    return {
        str(repository): _parse_logins(f"{section}.{repository}", paths)
        for repository, paths in value.items()
    }


def _submitted_key(review: Review) -> float:
    if review.submitted_at is None:
        return float("-inf")
    return review.submitted_at.timestamp()


def reviews_by_author(reviews: Iterable[Review]) -> Dict[str, str]:
    """Reduce reviews to the latest state that counts for each author.

    Reviews are folded oldest first. A later review overrides an earlier one,
    except that a ``COMMENTED`` review never clears an earlier ``APPROVED``
    from the same author. Unknown states are ignored.
    """
    states: Dict[str, str] = {}
    for review in sorted(reviews, key=_submitted_key):
        if review.state not in REVIEW_STATES:
            logger.debug(
                "Ignoring review with unknown state",
                extra={"author": review.author, "state": review.state},
            )
            continue
        if review.state == COMMENTED and states.get(review.author) == APPROVED:
            continue
        states[review.author] = review.state
    return states


def _count_approvals(reviewers: Iterable[str], states: Dict[str, str]) -> int:
    return sum(1 for reviewer in set(reviewers) if states.get(reviewer) == APPROVED)


def _approved_by_any(reviewers: Iterable[str], states: Dict[str, str]) -> bool:
    return _count_approvals(reviewers, states) > 0


class Assignments:
    """Assigns reviewers to pull requests and checks their approvals."""

    def __init__(self, config: ReviewConfig, rand: Optional[Selector] = None) -> None:
        """Initialize assignments over a reviewer pool.

        Args:
            config: Reviewer pool configuration.
            rand: Picks one of ``n`` equally eligible candidates. Defaults to
                a non-cryptographic random source; tests inject a fixed index.
        """
        self._config = config
        self._rand: Selector = rand or random.Random().randrange

    @classmethod
    def from_string(cls, document: str, rand: Optional[Selector] = None) -> "Assignments":
        """Parse a JSON reviewers document and return assignments.

        Raises:
            ConfigurationError: If the document is not a valid JSON object or
                one of its sections is malformed.
        """
        try:
            data = json.loads(document)
        except ValueError as exc:
            raise ConfigurationError("Reviewers document is not valid JSON.") from exc

        if not isinstance(data, dict):
            raise ConfigurationError("Reviewers document must be a JSON object.")

        return cls(ReviewConfig.from_dict(data), rand=rand)

    @property
    def config(self) -> ReviewConfig:
        return self._config

    def single_approver_paths(self, repository: str) -> List[str]:
        """Return path prefixes in ``repository`` that only need one approval."""
        return list(self._config.single_approver_paths.get(repository, []))

    def is_internal(self, login: str) -> bool:
        """Return True if ``login`` is a known bot or listed as a code or docs reviewer.

        Org membership is the remaining way to be internal; that lookup needs
        the GitHub API and is done by the bot.
        """
        if login in BOT_AUTHORS:
            return True
        return login in self._config.code_reviewers or login in self._config.docs_reviewers

    def get(
        self,
        environment: Environment,
        changes: Changes,
        files: Sequence[PullRequestFile],
    ) -> List[str]:
        """Return the reviewers to request for a pull request."""
        author = environment.author
        reviewers: List[str] = []

        if changes.docs and changes.code:
            logger.info("Assign: found docs and code changes", extra={"author": author})
            reviewers.extend(self.get_docs_reviewers(author, files))
            reviewers.extend(self._get_code_reviewers(environment, files))
        elif changes.code:
            logger.info("Assign: found code changes", extra={"author": author})
            reviewers.extend(self._get_code_reviewers(environment, files))
        elif changes.docs:
            logger.info("Assign: found docs changes", extra={"author": author})
            reviewers.extend(self.get_docs_reviewers(author, files))
        else:
            # An empty changeset goes to the admins for triage.
            logger.info("Assign: found no docs or code changes", extra={"author": author})
            reviewers.extend(self._admins(author))

        return list(dict.fromkeys(reviewers))

    def get_docs_reviewers(
        self,
        author: str,
        files: Optional[Sequence[PullRequestFile]] = None,
    ) -> List[str]:
        """Return docs reviewers for ``author``, plus preferred code reviewers for ``files``.

        Falls back to the admins when no docs reviewer other than the author
        is available.
        """
        return self._docs_reviewers(author, files or [], include_omitted=False)

    def get_admin_reviewers(self, author: str) -> List[str]:
        """Return the admins, minus the author."""
        return self._admins(author)

    def get_code_reviewer_sets(
        self,
        environment: Environment,
        files: Optional[Sequence[PullRequestFile]] = None,
    ) -> Tuple[List[str], List[str]]:
        """Return the owner (A) and non-owner (B) reviewer sets to assign from.

        Authors outside the code reviewer pool, and members of the Internal
        team, are assigned from the admins: the admin list (minus author and
        omitted logins) is split in half. An empty half is filled from the
        repository's regular pool.
        """
        author = environment.author
        reviewer = self._config.code_reviewers.get(author)

        if reviewer is None or reviewer.team == INTERNAL_TEAM:
            admins = self._admins(author, omit=self._config.code_reviewers_omit)
            half = len(admins) // 2
            set_a, set_b = admins[:half], admins[half:]
            if set_a and set_b:
                return set_a, set_b
            pool_a, pool_b = self._reviewer_sets(environment, files or [], include_omitted=False)
            return set_a or pool_a, set_b or pool_b

        return self._reviewer_sets(environment, files or [], include_omitted=False)

    def check_external(self, author: str, reviews: Sequence[Review]) -> None:
        """Require two distinct admins to have approved an external contributor's PR.

        Raises:
            ExternalApprovalRequiredError: If fewer than two admins approved.
        """
        logger.info("Check: found external author", extra={"author": author})

        admins = self._admins(author)
        states = reviews_by_author(review for review in reviews if review.author != author)
        if _count_approvals(admins, states) >= 2:
            return

        raise ExternalApprovalRequiredError(f"at least two approvals required from {admins}")

    def check_internal(
        self,
        environment: Environment,
        reviews: Sequence[Review],
        changes: Changes,
        files: Optional[Sequence[PullRequestFile]] = None,
    ) -> None:
        """Verify that the required reviewers approved an internal author's PR.

        Business logic:
        - The author's own reviews never count.
        - Large PRs need an admin approval on top of every other rule.
        - Release PRs need one release reviewer approval and nothing else.
        - Docs changes need an approval from the docs reviewers.
        - Code changes need an approval from set A and one from set B, or a
          single approval from either set when ``approver_count`` is 1. An
          admin approval satisfies the code rule on its own.
        - A PR with neither docs nor code changes needs two admin approvals.

        Raises:
            ReviewError: A subclass describing the first unmet requirement.
        """
        author = environment.author
        files = files or []
        logger.info(
            "Check: found internal author",
            extra={"author": author, "repository": environment.repository},
        )

        states = reviews_by_author(review for review in reviews if review.author != author)
        admins = self._admins(author)

        if changes.large:
            logger.info("Check: detected large PR, requiring admin approval")
            if not _approved_by_any(admins, states):
                raise AdminApprovalRequiredForSizeError(
                    "this PR is large and requires admin approval to merge"
                )

        if changes.release:
            logger.info("Check: found release PR")
            release_reviewers = [r for r in self._config.release_reviewers if r != author]
            if not _approved_by_any(release_reviewers, states):
                raise ReleaseApprovalRequiredError(
                    f"release PRs require at least one approval from {release_reviewers}"
                )
            return

        if not changes.docs and not changes.code:
            logger.info("Check: found no docs or code changes")
            if _count_approvals(admins, states) < 2:
                raise AdminApprovalRequiredError(f"requires two admin approvals from {admins}")
            return

        if changes.docs:
            logger.info("Check: found docs changes")
            self._check_docs_reviews(author, states, files)

        if changes.code:
            logger.info("Check: found code changes")
            self._check_code_reviews(environment, states, changes, files)

    def reviewers_to_dismiss(
        self,
        requested: Sequence[str],
        reviews: Sequence[Review],
        is_internal: Optional[Callable[[str], bool]] = None,
    ) -> List[str]:
        """Return requested reviewers that can be removed from an approved PR.

        The PR must already have passed :meth:`check_internal`. That check can
        pass on a single admin approval, so nothing is dismissed unless at
        least two internal reviewers approved. ``is_internal`` defaults to the
        local :meth:`is_internal`; the bot passes one that also checks org
        membership.
        """
        is_internal = is_internal or self.is_internal
        reviewed_by = {review.author for review in reviews}
        states = reviews_by_author(reviews)

        internal_approvals = sum(
            1 for login, state in states.items() if state == APPROVED and is_internal(login)
        )
        if internal_approvals < 2:
            return []

        return [login for login in requested if login not in reviewed_by]

    def _check_docs_reviews(
        self,
        author: str,
        states: Dict[str, str],
        files: Sequence[PullRequestFile],
    ) -> None:
        reviewers = self._docs_reviewers(author, files, include_omitted=True)
        if _approved_by_any(reviewers, states):
            return

        raise DocsApprovalRequiredError(f"requires at least one approval from {reviewers}")

    def _check_code_reviews(
        self,
        environment: Environment,
        states: Dict[str, str],
        changes: Changes,
        files: Sequence[PullRequestFile],
    ) -> None:
        if _approved_by_any(self._admins(environment.author), states):
            return

        # Omitted reviewers are not assigned, but their approvals still count.
        set_a, set_b = self._reviewer_sets(environment, files, include_omitted=True)

        if changes.approver_count <= 1:
            if _approved_by_any(set_a + set_b, states):
                return
            raise EachSetApprovalRequiredError(
                f"at least one approval required from {set_a + set_b}"
            )

        if _approved_by_any(set_a, states) and _approved_by_any(set_b, states):
            return

        raise EachSetApprovalRequiredError(
            f"at least one approval required from each set {set_a} {set_b}"
        )

    def _get_code_reviewers(
        self,
        environment: Environment,
        files: Sequence[PullRequestFile],
    ) -> List[str]:
        set_a, set_b = self.get_code_reviewer_sets(environment, files)
        return self._pick(set_a, files) + self._pick(set_b, files)

    def _pick(self, candidates: List[str], files: Sequence[PullRequestFile]) -> List[str]:
        """Pick preferred reviewers covering ``files``, or one random candidate."""
        if not candidates:
            return []

        preferred = self._preferred_reviewers(candidates, files)
        if preferred:
            return preferred

        pool = [login for login in candidates if not self._is_preferred_only(login)] or candidates
        return [pool[self._rand(len(pool))]]

    def _preferred_reviewers(
        self,
        candidates: List[str],
        files: Sequence[PullRequestFile],
    ) -> List[str]:
        """Return one preferred reviewer per file not already covered by an earlier pick."""
        selected: List[str] = []
        for file in files:
            matching = [
                login
                for login in candidates
                if login in self._config.code_reviewers
                and self._config.code_reviewers[login].prefers(file.name)
            ]
            if not matching or any(login in selected for login in matching):
                continue

            reviewer = matching[self._rand(len(matching))]
            logger.info(
                "Picking preferred reviewer",
                extra={"reviewer": reviewer, "file": file.name},
            )
            selected.append(reviewer)
        return selected

    def _is_preferred_only(self, login: str) -> bool:
        reviewer = self._config.code_reviewers.get(login)
        return reviewer is not None and reviewer.preferred_only

    def _reviewer_sets(
        self,
        environment: Environment,
        files: Sequence[PullRequestFile],
        include_omitted: bool,
    ) -> Tuple[List[str], List[str]]:
        """Partition the repository's code reviewer pool into owners and non-owners.

        The pool is the repository team (cloud PRs also accept Core reviewers)
        plus any reviewer preferred for one of ``files``. The author is never
        part of the pool.
        """
        author = environment.author
        omit = frozenset() if include_omitted else self._config.code_reviewers_omit

        teams = {environment.team()}
        if environment.repository == CLOUD_REPO:
            teams.add(CORE_TEAM)

        set_a: List[str] = []
        set_b: List[str] = []
        for login, reviewer in sorted(self._config.code_reviewers.items()):
            if login == author or login in omit:
                continue
            in_pool = any(reviewer.in_team(team) for team in teams)
            if not in_pool and not any(reviewer.prefers(file.name) for file in files):
                continue
            if reviewer.owner:
                set_a.append(login)
            else:
                set_b.append(login)

        return set_a, set_b

    def _docs_reviewers(
        self,
        author: str,
        files: Sequence[PullRequestFile],
        include_omitted: bool,
    ) -> List[str]:
        omit = frozenset() if include_omitted else self._config.docs_reviewers_omit
        reviewers = sorted(
            login for login in self._config.docs_reviewers if login != author and login not in omit
        )
        if not reviewers:
            reviewers = self._admins(author)

        for file in files:
            for login, reviewer in sorted(self._config.code_reviewers.items()):
                if login == author or login in reviewers:
                    continue
                if reviewer.prefers(file.name):
                    reviewers.append(login)

        return reviewers

    def _admins(self, author: str, omit: FrozenSet[str] = frozenset()) -> List[str]:
        return [admin for admin in self._config.admins if admin != author and admin not in omit]
