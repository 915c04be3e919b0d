"""Custom exception types for the GitHub review bot."""


class BotError(Exception):
    """Base exception for all recoverable review bot errors."""


class ConfigurationError(BotError):
    """Raised when runtime configuration or the reviewers document is missing or invalid."""


class AuthenticationError(BotError):
    """Raised when GitHub authentication credentials are unavailable."""


class ApiError(BotError):
    """Raised when a GitHub API request fails or returns an unexpected response."""


class BackportError(BotError):
    """Raised when reviewers for a backport pull request cannot be determined."""


class ReviewError(BotError):
    """Base class for pull requests that do not yet satisfy review policy.

    These are expected validation failures. They are never retried: the
    caller reports a failing check and waits for the next review event.
    """


class EachSetApprovalRequiredError(ReviewError):
    """Raised when code changes lack an approval from each reviewer set."""


class DocsApprovalRequiredError(ReviewError):
    """Raised when docs changes lack an approval from a docs reviewer."""


class ReleaseApprovalRequiredError(ReviewError):
    """Raised when a release pull request lacks a release reviewer approval."""


class AdminApprovalRequiredForSizeError(ReviewError):
    """Raised when a large pull request lacks an admin approval."""


class AdminApprovalRequiredError(ReviewError):
    """Raised when a pull request with no docs or code changes lacks two admin approvals."""


class ExternalApprovalRequiredError(ReviewError):
    """Raised when an external contributor's pull request lacks two admin approvals."""


class DoNotMergeError(ReviewError):
    """Raised when the pull request carries the do-not-merge label."""
