"""GitHub REST API client for the review bot."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from .config import Config
from .errors import ApiError
from .models import PullRequest, PullRequestFile, Review

logger = logging.getLogger(__name__)


class GitHubClient:
    """Small, typed client for the GitHub pull request APIs the bot needs."""

    _BASE_URL = "https://api.github.com"
    _PAGE_SIZE = 100
    _MAX_RETRIES = 5
    _MAX_BACKOFF_SECONDS = 30

    def __init__(self, config: Config, timeout_seconds: int = 30) -> None:
        """Initialize an authenticated GitHub API client.

        Args:
            config: Validated runtime configuration including the token.
            timeout_seconds: Per-request timeout in seconds.
        """
        self._config = config
        self._timeout_seconds = timeout_seconds

        self._session = requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {config.token}",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )

    def _build_url(self, path: str) -> str:
        """Build a fully qualified API URL from a path below the API root."""
        return f"{self._BASE_URL}/{path.lstrip('/')}"

    def _parse_datetime(self, value: Optional[str]) -> Optional[datetime]:
        """Parse GitHub ISO8601 timestamps into timezone-aware datetimes."""
        if not value:
            return None

        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        parsed = datetime.fromisoformat(normalized)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Execute a GET request with retry logic for 429/5xx responses.

        Raises:
            ApiError: If the request repeatedly fails or returns HTTP >= 400.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                response = self._session.get(url, params=params, timeout=self._timeout_seconds)
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self._MAX_RETRIES:
                    raise ApiError(f"GitHub request failed after retries: GET {url}") from exc
                time.sleep(min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1)))
                continue

            status_code = response.status_code
            is_retryable = status_code == 429 or 500 <= status_code <= 599

            if is_retryable and attempt < self._MAX_RETRIES:
                logger.warning(
                    "Retrying GitHub request",
                    extra={"url": url, "status_code": status_code, "attempt": attempt},
                )
                time.sleep(self._extract_backoff_seconds(response, attempt))
                continue

            if status_code >= 400:
                raise ApiError(
                    f"GitHub API request failed: GET {url} returned {status_code} - {response.text}"
                )

            return response

        raise ApiError(f"GitHub request failed after retries: GET {url}") from last_error

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a single resource and decode its JSON body."""
        url = self._build_url(path)
        response = self._get(url, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(f"GitHub API returned invalid JSON: GET {url}") from exc

    def _get_paginated(self, path: str) -> List[Dict[str, Any]]:
        """GET every page of a list endpoint by following ``Link: rel="next"``."""
        url: Optional[str] = self._build_url(path)
        params: Optional[Dict[str, Any]] = {"per_page": self._PAGE_SIZE}
        items: List[Dict[str, Any]] = []

        while url:
            response = self._get(url, params=params)
            try:
                page = response.json()
            except ValueError as exc:
                raise ApiError(f"GitHub API returned invalid JSON: GET {url}") from exc

            if not isinstance(page, list):
                raise ApiError(f"GitHub API returned unexpected payload shape: GET {url}")

            items.extend(page)
            # The next link already carries the query string.
            url = (response.links or {}).get("next", {}).get("url")
            params = None

        return items

    def _send(self, method: str, path: str, payload: Dict[str, Any]) -> requests.Response:
        """Execute a single, non-retried mutating request.

        Raises:
            ApiError: If the request fails or returns HTTP >= 400.
        """
        url = self._build_url(path)
        try:
            response = self._session.request(
                method, url, json=payload, timeout=self._timeout_seconds
            )
        except requests.RequestException as exc:
            raise ApiError(f"GitHub request failed: {method} {url}") from exc

        if response.status_code >= 400:
            raise ApiError(
                f"GitHub API request failed: {method} {url} "
                f"returned {response.status_code} - {response.text}"
            )
        return response

    def list_reviews(self, organization: str, repository: str, number: int) -> List[Review]:
        """List submitted reviews for a pull request, oldest first."""
        reviews: List[Review] = []
        for item in self._get_paginated(f"repos/{organization}/{repository}/pulls/{number}/reviews"):
            author = (item.get("user") or {}).get("login")
            state = item.get("state")
            if not author or not state:
                continue
            reviews.append(
                Review(
                    author=str(author),
                    state=str(state),
                    submitted_at=self._parse_datetime(item.get("submitted_at")),
                )
            )

        reviews.sort(
            key=lambda review: review.submitted_at or datetime.min.replace(tzinfo=timezone.utc)
        )
        return reviews

    def list_files(self, organization: str, repository: str, number: int) -> List[PullRequestFile]:
        """List files changed by a pull request."""
        files: List[PullRequestFile] = []
        for item in self._get_paginated(f"repos/{organization}/{repository}/pulls/{number}/files"):
            name = item.get("filename")
            if not name:
                continue
            files.append(
                PullRequestFile(
                    name=str(name),
                    additions=int(item.get("additions") or 0),
                    deletions=int(item.get("deletions") or 0),
                    status=str(item.get("status") or ""),
                )
            )
        return files

    def list_reviewers(self, organization: str, repository: str, number: int) -> List[str]:
        """List users with an outstanding review request on a pull request."""
        payload = self._get_json(
            f"repos/{organization}/{repository}/pulls/{number}/requested_reviewers"
        )
        if not isinstance(payload, dict):
            raise ApiError(
                "GitHub API returned unexpected requested reviewers payload: "
                f"{organization}/{repository}#{number}"
            )
        return [str(user["login"]) for user in payload.get("users", []) if user.get("login")]

    def get_pull_request(self, organization: str, repository: str, number: int) -> PullRequest:
        """Fetch a single pull request."""
        item = self._get_json(f"repos/{organization}/{repository}/pulls/{number}")
        if not isinstance(item, dict):
            raise ApiError(
                f"GitHub API returned unexpected pull request payload: {organization}/{repository}#{number}"
            )

        author = (item.get("user") or {}).get("login")
        if not author:
            raise ApiError(
                "GitHub pull request payload is missing required fields: "
                f"{organization}/{repository}#{number}"
            )

        head = item.get("head") or {}
        base = item.get("base") or {}
        return PullRequest(
            author=str(author),
            repository=repository,
            number=int(item.get("number") or number),
            unsafe_head=str(head.get("ref") or ""),
            unsafe_base=str(base.get("ref") or ""),
            unsafe_title=str(item.get("title") or ""),
            unsafe_body=str(item.get("body") or ""),
            unsafe_labels=[
                str(label["name"]) for label in item.get("labels", []) if label.get("name")
            ],
            fork=bool((head.get("repo") or {}).get("fork", False)),
        )

    def is_org_member(self, user: str, organization: str) -> bool:
        """Return True if ``user`` is a member of ``organization``.

        GitHub answers 204 for members and 404 (or a 302 redirect for
        requesters outside the org) otherwise.
        """
        url = self._build_url(f"orgs/{organization}/members/{user}")
        try:
            response = self._session.get(
                url, timeout=self._timeout_seconds, allow_redirects=False
            )
        except requests.RequestException as exc:
            raise ApiError(f"GitHub request failed: GET {url}") from exc

        if response.status_code == 204:
            return True
        if response.status_code in (302, 404):
            return False
        raise ApiError(
            f"GitHub API request failed: GET {url} returned {response.status_code} - {response.text}"
        )

    def request_reviewers(
        self, organization: str, repository: str, number: int, reviewers: List[str]
    ) -> None:
        """Request reviews from ``reviewers`` on a pull request."""
        self._send(
            "POST",
            f"repos/{organization}/{repository}/pulls/{number}/requested_reviewers",
            {"reviewers": reviewers},
        )

    def dismiss_reviewers(
        self, organization: str, repository: str, number: int, reviewers: List[str]
    ) -> None:
        """Remove outstanding review requests for ``reviewers`` from a pull request."""
        self._send(
            "DELETE",
            f"repos/{organization}/{repository}/pulls/{number}/requested_reviewers",
            {"reviewers": reviewers},
        )

    def list_comments(self, organization: str, repository: str, number: int) -> List[str]:
        """List comment bodies on a pull request's conversation."""
        return [
            str(item.get("body") or "")
            for item in self._get_paginated(f"repos/{organization}/{repository}/issues/{number}/comments")
        ]

    def create_comment(self, organization: str, repository: str, number: int, body: str) -> None:
        """Leave a comment on a pull request's conversation."""
        self._send("POST", f"repos/{organization}/{repository}/issues/{number}/comments", {"body": body})

    def add_labels(self, organization: str, repository: str, number: int, labels: List[str]) -> None:
        """Add labels to a pull request."""
        self._send("POST", f"repos/{organization}/{repository}/issues/{number}/labels", {"labels": labels})
