"""Tests for application orchestration in the main module."""

import sys
from argparse import Namespace
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from reviewbot.config import Config
from reviewbot.errors import (
    ApiError,
    AuthenticationError,
    BackportError,
    ConfigurationError,
    EachSetApprovalRequiredError,
)
from reviewbot.main import run_workflow
from reviewbot.models import Environment, PullRequest


def _args(workflow="check", local=False, org=None, repo=None, pr=None):
    return Namespace(
        workflow=workflow,
        token="gh-token",
        reviewers="e30=",
        local=local,
        org=org,
        repo=repo,
        pr=pr,
    )


def _environment():
    return Environment(organization="gravitational", repository="teleport", number=1, author="carol")


def test_run_workflow_check_success():
    """Verify orchestration returns 0 and wires components correctly on success."""
    config = Config(workflow="check", token="gh-token", reviewers="{}")
    github = Mock()
    bot = Mock()
    assignments = Mock()

    with patch("reviewbot.main.parse_args", return_value=_args()) as parse_args_mock, patch(
        "reviewbot.main.load_config", return_value=config
    ) as load_config_mock, patch(
        "reviewbot.main.GitHubClient", return_value=github
    ) as client_ctor_mock, patch(
        "reviewbot.main.load_environment", return_value=_environment()
    ), patch(
        "reviewbot.main.Assignments.from_string", return_value=assignments
    ) as from_string_mock, patch(
        "reviewbot.main.Bot", return_value=bot
    ) as bot_ctor_mock:
        exit_code = run_workflow()

    assert exit_code == 0
    parse_args_mock.assert_called_once_with()
    load_config_mock.assert_called_once_with(
        workflow="check",
        token="gh-token",
        reviewers="e30=",
        local=False,
        org=None,
        repo=None,
        pr_number=None,
    )
    client_ctor_mock.assert_called_once_with(config=config)
    from_string_mock.assert_called_once_with("{}")
    bot_ctor_mock.assert_called_once_with(github, _environment(), assignments)
    bot.check.assert_called_once_with()
    bot.assign.assert_not_called()


@pytest.mark.parametrize("workflow,method", [("assign", "assign"), ("label", "label")])
def test_run_workflow_dispatches_workflow(workflow, method):
    """Verify the selected workflow method is invoked."""
    config = Config(workflow=workflow, token="gh-token", reviewers="")
    bot = Mock()

    with patch("reviewbot.main.parse_args", return_value=_args(workflow)), patch(
        "reviewbot.main.load_config", return_value=config
    ), patch("reviewbot.main.GitHubClient"), patch(
        "reviewbot.main.load_environment", return_value=_environment()
    ), patch("reviewbot.main.Bot", return_value=bot) as bot_ctor_mock:
        exit_code = run_workflow()

    assert exit_code == 0
    getattr(bot, method).assert_called_once_with()
    assert bot_ctor_mock.call_args.args[2] is None


def test_run_workflow_local_mode_builds_environment_from_pull_request():
    """Verify local runs read the pull request instead of the Actions event."""
    config = Config(
        workflow="label",
        token="gh-token",
        reviewers="",
        local=True,
        org="gravitational",
        repo="teleport",
        pr_number=7,
    )
    github = Mock()
    github.get_pull_request.return_value = PullRequest(
        author="carol", repository="teleport", number=7, unsafe_head="carol/fix", unsafe_base="master"
    )

    with patch("reviewbot.main.parse_args", return_value=_args("label", True, "gravitational", "teleport", 7)), patch(
        "reviewbot.main.load_config", return_value=config
    ), patch("reviewbot.main.GitHubClient", return_value=github), patch(
        "reviewbot.main.load_environment"
    ) as load_environment_mock, patch("reviewbot.main.Bot") as bot_ctor_mock:
        exit_code = run_workflow()

    assert exit_code == 0
    load_environment_mock.assert_not_called()
    environment = bot_ctor_mock.call_args.args[1]
    assert environment.author == "carol"
    assert environment.number == 7
    assert environment.unsafe_head == "carol/fix"


@pytest.mark.parametrize(
    "error,expected_exit_code",
    [
        (ConfigurationError("bad reviewers"), 2),
        (AuthenticationError("Missing required GitHub token."), 3),
        (ApiError("GitHub API request failed"), 4),
        (EachSetApprovalRequiredError("at least one approval required"), 5),
        (BackportError("could not find the original pull request"), 5),
        (RuntimeError("boom"), 1),
    ],
)
def test_run_workflow_maps_errors_to_exit_codes(error, expected_exit_code):
    """Verify failures are mapped to distinct process exit codes."""
    with patch("reviewbot.main.parse_args", return_value=_args()), patch(
        "reviewbot.main.load_config", side_effect=error
    ):
        exit_code = run_workflow()

    assert exit_code == expected_exit_code


def test_run_workflow_review_failure_returns_policy_exit_code(capsys):
    """Verify an unsatisfied review policy is reported on stderr."""
    config = Config(workflow="check", token="gh-token", reviewers="{}")
    bot = Mock()
    bot.check.side_effect = EachSetApprovalRequiredError("at least one approval required from each set")

    with patch("reviewbot.main.parse_args", return_value=_args()), patch(
        "reviewbot.main.load_config", return_value=config
    ), patch("reviewbot.main.GitHubClient"), patch(
        "reviewbot.main.load_environment", return_value=_environment()
    ), patch("reviewbot.main.Bot", return_value=bot):
        exit_code = run_workflow()

    assert exit_code == 5
    assert "at least one approval required from each set" in capsys.readouterr().err


def test_run_workflow_local_mode_without_target_returns_config_exit_code():
    """Verify a local run missing its pull request target fails as a configuration error."""
    config = Config(workflow="label", token="gh-token", reviewers="", local=True, org="gravitational")
    github = Mock()

    with patch("reviewbot.main.parse_args", return_value=_args("label", True, "gravitational")), patch(
        "reviewbot.main.load_config", return_value=config
    ), patch("reviewbot.main.GitHubClient", return_value=github):
        exit_code = run_workflow()

    assert exit_code == 2
    github.get_pull_request.assert_not_called()
