"""Tests for GitHub API client behavior with mocked HTTP."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import requests

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from reviewbot.config import Config
from reviewbot.errors import ApiError
from reviewbot.github_client import GitHubClient
from reviewbot.models import PullRequestFile


def _build_client() -> GitHubClient:
    config = Config(workflow="check", token="gh-token", reviewers="{}")
    return GitHubClient(config=config)


def _response(
    status_code: int,
    payload=None,
    text: str = "",
    headers: dict | None = None,
    links: dict | None = None,
):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    response.links = links or {}
    response.json.return_value = payload if payload is not None else {}
    return response


def test_session_sends_bearer_token():
    """Verify the session is authenticated with the configured token."""
    client = _build_client()

    assert client._session.headers["Authorization"] == "Bearer gh-token"
    assert client._session.headers["Accept"] == "application/vnd.github+json"


def test_get_json_retries_on_429_and_succeeds():
    """Verify _get_json retries after HTTP 429 and honors Retry-After."""
    client = _build_client()
    first = _response(429, headers={"Retry-After": "3"})
    second = _response(200, payload={"users": []})
    client._session.get = Mock(side_effect=[first, second])

    with patch("reviewbot.github_client.time.sleep") as sleep_mock:
        payload = client._get_json("repos/org/repo/pulls/1/requested_reviewers")

    assert payload == {"users": []}
    assert client._session.get.call_count == 2
    sleep_mock.assert_called_once_with(3)


def test_get_json_retries_on_5xx_and_raises_after_max_retries():
    """Verify retryable server errors raise ApiError once retries are exhausted."""
    client = _build_client()
    server_error = _response(502, text="bad gateway")
    client._session.get = Mock(side_effect=[server_error] * client._MAX_RETRIES)

    with patch("reviewbot.github_client.time.sleep") as sleep_mock:
        with pytest.raises(ApiError):
            client._get_json("repos/org/repo/pulls/1")

    assert client._session.get.call_count == client._MAX_RETRIES
    assert sleep_mock.call_count == client._MAX_RETRIES - 1


def test_get_json_raises_on_client_error_without_retry():
    """Verify 4xx responses other than 429 fail immediately."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(404, text="Not Found"))

    with pytest.raises(ApiError) as exc_info:
        client._get_json("repos/org/repo/pulls/1")

    assert "404" in str(exc_info.value)
    assert client._session.get.call_count == 1


def test_get_wraps_timeouts_as_api_error():
    """Verify transport failures surface as ApiError after retries."""
    client = _build_client()
    client._session.get = Mock(side_effect=requests.Timeout("timed out"))

    with patch("reviewbot.github_client.time.sleep"):
        with pytest.raises(ApiError):
            client._get_json("repos/org/repo/pulls/1")


def test_list_reviews_follows_pagination_and_sorts():
    """Verify reviews from every page are returned oldest first."""
    client = _build_client()
    first = _response(
        200,
        payload=[
            {"user": {"login": "bob"}, "state": "APPROVED", "submitted_at": "2024-01-02T00:00:00Z"},
        ],
        links={"next": {"url": "https://api.github.com/repos/org/repo/pulls/1/reviews?page=2"}},
    )
    second = _response(
        200,
        payload=[
            {"user": {"login": "alice"}, "state": "COMMENTED", "submitted_at": "2024-01-01T00:00:00Z"},
            {"user": None, "state": "APPROVED", "submitted_at": "2024-01-03T00:00:00Z"},
        ],
    )
    client._session.get = Mock(side_effect=[first, second])

    reviews = client.list_reviews("org", "repo", 1)

    assert [review.author for review in reviews] == ["alice", "bob"]
    assert reviews[0].submitted_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    first_call, second_call = client._session.get.call_args_list
    assert first_call.kwargs["params"] == {"per_page": client._PAGE_SIZE}
    assert second_call.args[0].endswith("?page=2")
    assert second_call.kwargs["params"] is None


def test_list_files_parses_changes():
    """Verify changed files are parsed with their line counts."""
    client = _build_client()
    client._session.get = Mock(
        return_value=_response(
            200,
            payload=[{"filename": "lib/auth/auth.go", "additions": 3, "deletions": 1, "status": "modified"}],
        )
    )

    files = client.list_files("org", "repo", 1)

    assert files == [PullRequestFile(name="lib/auth/auth.go", additions=3, deletions=1, status="modified")]


def test_list_reviewers_returns_user_logins():
    """Verify only individual requested reviewers are returned."""
    client = _build_client()
    client._session.get = Mock(
        return_value=_response(200, payload={"users": [{"login": "alice"}], "teams": [{"slug": "core"}]})
    )

    assert client.list_reviewers("org", "repo", 1) == ["alice"]


def test_get_pull_request_parses_fields():
    """Verify pull request metadata is parsed into the model."""
    client = _build_client()
    client._session.get = Mock(
        return_value=_response(
            200,
            payload={
                "number": 7,
                "user": {"login": "carol"},
                "title": "Backport #5 to branch/v15",
                "body": None,
                "labels": [{"name": "do-not-merge"}],
                "head": {"ref": "carol/fix", "repo": {"fork": True}},
                "base": {"ref": "branch/v15"},
            },
        )
    )

    pull = client.get_pull_request("org", "repo", 7)

    assert pull.author == "carol"
    assert pull.unsafe_title == "Backport #5 to branch/v15"
    assert pull.unsafe_body == ""
    assert pull.unsafe_labels == ["do-not-merge"]
    assert pull.unsafe_base == "branch/v15"
    assert pull.fork is True


def test_get_pull_request_missing_author_raises_api_error():
    """Verify an unexpected payload shape raises ApiError."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(200, payload={"number": 7}))

    with pytest.raises(ApiError):
        client.get_pull_request("org", "repo", 7)


@pytest.mark.parametrize("status_code,expected", [(204, True), (404, False), (302, False)])
def test_is_org_member(status_code, expected):
    """Verify org membership is derived from the response status."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(status_code))

    assert client.is_org_member("alice", "org") is expected
    assert client._session.get.call_args.kwargs["allow_redirects"] is False


def test_is_org_member_raises_on_unexpected_status():
    """Verify unexpected membership responses raise ApiError."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(401, text="Bad credentials"))

    with pytest.raises(ApiError):
        client.is_org_member("alice", "org")


def test_dismiss_reviewers_sends_delete():
    """Verify review requests are removed with a DELETE request."""
    client = _build_client()
    client._session.request = Mock(return_value=_response(200))

    client.dismiss_reviewers("org", "repo", 1, ["bob"])

    client._session.request.assert_called_once_with(
        "DELETE",
        "https://api.github.com/repos/org/repo/pulls/1/requested_reviewers",
        json={"reviewers": ["bob"]},
        timeout=30,
    )


def test_request_reviewers_failure_raises_api_error():
    """Verify mutating requests are not retried and raise ApiError on failure."""
    client = _build_client()
    client._session.request = Mock(return_value=_response(422, text="Unprocessable"))

    with pytest.raises(ApiError):
        client.request_reviewers("org", "repo", 1, ["bob"])

    assert client._session.request.call_count == 1


def test_create_comment_and_add_labels_use_issue_endpoints():
    """Verify comments and labels are written through the issues API."""
    client = _build_client()
    client._session.request = Mock(return_value=_response(201))

    client.create_comment("org", "repo", 1, "hello")
    client.add_labels("org", "repo", 1, ["size/sm"])

    comment_call, label_call = client._session.request.call_args_list
    assert comment_call.args == ("POST", "https://api.github.com/repos/org/repo/issues/1/comments")
    assert comment_call.kwargs["json"] == {"body": "hello"}
    assert label_call.args == ("POST", "https://api.github.com/repos/org/repo/issues/1/labels")
    assert label_call.kwargs["json"] == {"labels": ["size/sm"]}


def test_list_comments_returns_bodies():
    """Verify comment bodies are returned in order."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(200, payload=[{"body": "one"}, {"body": None}]))

    assert client.list_comments("org", "repo", 1) == ["one", ""]
