#!/usr/bin/env python3
"""Script to propagate the latest commit of a template to all its derived repositories."""

import logging
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from templatebot.application.event_handler import EventHandler
from templatebot.config import ConfigError, Settings
from templatebot.domain.repository import PropagationOutcome, TemplateRepository
from templatebot.infrastructure.github_client import GitHubClient

logger = logging.getLogger(__name__)


def main(argv=None):
    """Propagate <owner>/<template> to every repository associated with it."""
    argv = sys.argv[1:] if argv is None else argv

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if len(argv) != 1 or "/" not in argv[0]:
        logger.error("Usage: propagate_template.py <owner>/<template-repo>")
        return 2
    owner, name = argv[0].split("/", 1)

    try:
        settings = Settings.from_env()
        github_client = GitHubClient(token=settings.github_token, api_url=settings.api_url)
        handler = EventHandler.from_settings(settings, github_client=github_client)

        template = TemplateRepository.from_api(github_client.get_repository(owner, name))
        if not template.is_template:
            logger.error(f"{template.full_name} is not a template repository")
            return 1

        repos = handler.registry.lookup_derived_repos(template)
        results = handler.propagation.propagate_all(template, repos)
        for result in results:
            pr = f" #{result.pull_request.number}" if result.pull_request else ""
            logger.info(f"{result.repository.full_name}: {result.outcome.value}{pr}")

        return 1 if any(r.outcome is PropagationOutcome.ERROR for r in results) else 0

    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except Exception as e:
        logger.error(f"Propagation failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
