"""Command-line argument parsing for the GitHub review bot."""

from __future__ import annotations

import argparse

from .config import WORKFLOWS


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments for a review bot run.

    Returns:
        Parsed CLI arguments: the workflow to run, credentials, the reviewers
        document and, for local runs, the pull request to act on.
    """
    parser = argparse.ArgumentParser(
        prog="github-review-bot",
        description=(
            "Assign reviewers, check approvals and label GitHub pull requests "
            "from a GitHub Actions workflow."
        ),
    )

    parser.add_argument(
        "--workflow",
        required=True,
        choices=WORKFLOWS,
        help="Workflow to run.",
    )
    parser.add_argument(
        "--token",
        default=None,
        help="GitHub token (default: the GITHUB_TOKEN environment variable).",
    )
    parser.add_argument(
        "--reviewers",
        default=None,
        help="Base64 encoded JSON reviewers document.",
    )
    parser.add_argument(
        "--local",
        action="store_true",
        help="Run against --org/--repo/--pr instead of the GitHub Actions event.",
    )
    parser.add_argument(
        "--org",
        default=None,
        help="GitHub organization (local mode).",
    )
    parser.add_argument(
        "--repo",
        default=None,
        help="GitHub repository (local mode).",
    )
    parser.add_argument(
        "--pr",
        type=_positive_int,
        default=None,
        help="Pull request number (local mode).",
    )

    return parser.parse_args()
