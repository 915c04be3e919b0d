"""Application entry point for the GitHub review bot."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from .bot import Bot
from .cli import parse_args
from .config import ASSIGN_WORKFLOW, CHECK_WORKFLOW, Config, load_config
from .env import load_environment
from .errors import (
    ApiError,
    AuthenticationError,
    BackportError,
    ConfigurationError,
    ReviewError,
)
from .github_client import GitHubClient
from .models import Environment
from .review import Assignments

logger = logging.getLogger(__name__)


def _local_environment(github: GitHubClient, config: Config) -> Environment:
    """Build the environment for a pull request named on the command line."""
    if not config.org or not config.repo or not config.pr_number:
        raise ConfigurationError("Local mode requires --org, --repo and --pr.")
    pull = github.get_pull_request(config.org, config.repo, config.pr_number)
    return Environment(
        organization=config.org,
        repository=config.repo,
        number=config.pr_number,
        author=pull.author,
        unsafe_head=pull.unsafe_head,
        unsafe_base=pull.unsafe_base,
    )


def run_workflow() -> int:
    """Run the selected workflow end-to-end.

    Returns:
        Process exit code where 0 indicates success.
    """
    try:
        args = parse_args()
        config = load_config(
            workflow=args.workflow,
            token=args.token,
            reviewers=args.reviewers,
            local=args.local,
            org=args.org,
            repo=args.repo,
            pr_number=args.pr,
        )

        github = GitHubClient(config=config)
        if config.local:
            environment = _local_environment(github, config)
        else:
            environment = load_environment()

        assignments: Optional[Assignments] = None
        if config.reviewers:
            assignments = Assignments.from_string(config.reviewers)

        bot = Bot(github, environment, assignments)
        logger.info(
            "Running workflow",
            extra={
                "workflow": config.workflow,
                "repository": f"{environment.organization}/{environment.repository}",
                "number": environment.number,
            },
        )

        if config.workflow == ASSIGN_WORKFLOW:
            bot.assign()
        elif config.workflow == CHECK_WORKFLOW:
            bot.check()
        else:
            bot.label()

        logger.info("Workflow completed", extra={"workflow": config.workflow})
        return 0
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except AuthenticationError as exc:
        print(f"Authentication error: {exc}", file=sys.stderr)
        return 3
    except ApiError as exc:
        print(f"GitHub API error: {exc}", file=sys.stderr)
        return 4
    except (ReviewError, BackportError) as exc:
        print(f"Review check failed: {exc}", file=sys.stderr)
        return 5
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return 1


def main() -> int:
    """CLI entry point."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return run_workflow()


if __name__ == "__main__":
    raise SystemExit(main())
