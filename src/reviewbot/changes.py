"""Classification of pull request changesets.

The decision engine needs to know whether a PR touches docs, code or both,
whether it is a release PR, whether it is large enough to need an admin, and
how many approvals it requires. All of it is derived from the changed file
list and branch names at check time.
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

from .models import (
    DEFAULT_APPROVER_COUNT,
    MAIN_REPO,
    Changes,
    Environment,
    PullRequestFile,
)

logger = logging.getLogger(__name__)

SIZE_SMALL = "size/sm"
SIZE_MEDIUM = "size/md"
SIZE_LARGE = "size/lg"
SIZE_XLARGE = "size/xl"

# Operator CRD manifests are generated from the API definitions.
_CRD_PATTERN = re.compile(r".*/resources\.teleport\.dev_[A-Za-z]+\.yaml$")

_GENERATED_SUFFIXES = (
    ".golden",
    ".pb.go",
    "_pb.js",
    "_pb.d.ts",
    "_pb.ts",
    "_pb.grpc-client.ts",
    "_pb.grpc-server.ts",
    ".json",
)

_GENERATED_DIRECTORIES = ("webassets/", "vendor/")

# Files that change together when cutting a release. Not exhaustive, but a
# release branch touching exactly these is a release PR.
RELEASE_PR_FILES = (
    "CHANGELOG.md",
    "Makefile",
    "version.go",
    "api/version.go",
    "integrations/kube-agent-updater/version.go",
)

RELEASE_BRANCH_PREFIX = "release/"


def is_docs_file(name: str) -> bool:
    """Return True for documentation paths in the main repository."""
    return name.startswith("docs/") or name == "CHANGELOG.md"


def skip_file_for_size_check(name: str) -> bool:
    """Return True for generated or vendored files that do not count toward PR size."""
    return (
        name.endswith(_GENERATED_SUFFIXES)
        or any(directory in name for directory in _GENERATED_DIRECTORIES)
        or _CRD_PATTERN.match(name) is not None
    )


def pr_size(files: Sequence[PullRequestFile]) -> str:
    """Return the size label for the net number of changed lines.

    Buckets: fewer than 100 lines is small, fewer than 600 medium, fewer than
    1500 large, anything else extra large.
    """
    additions = 0
    deletions = 0
    for file in files:
        if skip_file_for_size_check(file.name):
            continue
        additions += file.additions
        deletions += file.deletions

    delta = additions - deletions
    if delta < 100:
        return SIZE_SMALL
    if delta < 600:
        return SIZE_MEDIUM
    if delta < 1500:
        return SIZE_LARGE
    return SIZE_XLARGE


def is_release_pr(environment: Environment, files: Sequence[PullRequestFile]) -> bool:
    """Return True if the PR looks like a release PR.

    The head branch must start with ``release/``, every release marker file
    must be changed, and no other source file may be changed.
    """
    if not environment.unsafe_head.startswith(RELEASE_BRANCH_PREFIX):
        return False

    names = {file.name for file in files}
    if not all(release_file in names for release_file in RELEASE_PR_FILES):
        return False

    source_files = [file.name for file in files if not is_docs_file(file.name)]
    return all(name in RELEASE_PR_FILES for name in source_files)


def approver_count(paths: Sequence[str], files: Sequence[PullRequestFile]) -> int:
    """Return 1 when every changed file is under a single-approver path, else the default."""
    if not files or not paths:
        return DEFAULT_APPROVER_COUNT

    for file in files:
        if not any(file.name.startswith(path) for path in paths):
            return DEFAULT_APPROVER_COUNT
    return 1


def classify_changes(
    environment: Environment,
    files: Sequence[PullRequestFile],
    single_approver_paths: Sequence[str] = (),
) -> Changes:
    """Classify a pull request changeset.

    Args:
        environment: Identity of the pull request.
        files: Files changed by the pull request.
        single_approver_paths: Path prefixes of the repository that only
            need one approval.

    Returns:
        A ``Changes`` value describing the changeset.
    """
    changes = Changes(
        large=not environment.is_cloud_deploy_branch() and pr_size(files) == SIZE_XLARGE,
        release=is_release_pr(environment, files),
        approver_count=approver_count(single_approver_paths, files),
    )

    if environment.repository == MAIN_REPO:
        for file in files:
            if is_docs_file(file.name):
                changes.docs = True
            else:
                changes.code = True
    else:
        changes.code = True

    logger.debug(
        "Classified changes",
        extra={
            "repository": environment.repository,
            "number": environment.number,
            "docs": changes.docs,
            "code": changes.code,
            "large": changes.large,
            "release": changes.release,
            "approver_count": changes.approver_count,
        },
    )
    return changes
