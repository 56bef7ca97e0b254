"""Dispatches GitHub webhook payloads to the registry and propagation services."""

import logging
from typing import Any, Dict, List, Optional

from templatebot.application.propagation_service import PropagationService
from templatebot.application.template_registry import TemplateRegistry
from templatebot.config import Settings
from templatebot.domain.repository import DerivedRepository, PropagationResult, TemplateRepository
from templatebot.infrastructure.github_client import GitHubClient
from templatebot.infrastructure.registry_store import build_registry_store

logger = logging.getLogger(__name__)

REGISTRATION_ACTIONS = ("created", "publicized")


class EventHandler:
    """Entry point for ``push`` and ``repository`` events. Never raises on platform errors."""

    def __init__(self, registry: TemplateRegistry, propagation: PropagationService):
        self.registry = registry
        self.propagation = propagation

    @classmethod
    def from_settings(cls, settings: Settings, github_client: Optional[GitHubClient] = None) -> "EventHandler":
        """Wire the services for one process. Everything built here is stateless."""
        if github_client is None:
            github_client = GitHubClient(token=settings.github_token, api_url=settings.api_url)
        registry = TemplateRegistry(build_registry_store(github_client, settings))
        propagation = PropagationService(
            github_client,
            registry,
            branch_prefix=settings.branch_prefix,
            max_workers=settings.propagation_workers,
        )
        return cls(registry, propagation)

    def handle(self, event_name: str, payload: Dict[str, Any]) -> Any:
        if event_name == "push":
            return self.handle_push(payload)
        if event_name == "repository" and payload.get("action") in REGISTRATION_ACTIONS:
            return self.handle_repository_created(payload)
        logger.debug(f"Ignoring {event_name} event (action={payload.get('action')})")
        return None

    def handle_push(self, payload: Dict[str, Any]) -> List[PropagationResult]:
        """
        Propagate a push to a template's default branch.

        Returns:
            One result per derived repository; empty when the push is ignored
        """
        repository = payload.get("repository") or {}
        ref = payload.get("ref", "")

        # Only react to pushes to the default branch of a template
        if ref != f"refs/heads/{repository.get('default_branch')}":
            return []
        if not repository.get("is_template"):
            return []

        template = TemplateRepository.from_api(repository)
        logger.info(f"Detected push to template repository: {template.full_name}")

        try:
            repos = self.registry.lookup_derived_repos(template)
        except Exception as e:
            logger.error(f"Error processing template repository {template.full_name}: {e}", exc_info=True)
            return []

        if not repos:
            logger.info(f"No repositories found using template: {template.full_name}")
            return []

        logger.info(f"Found {len(repos)} repositories using template: {template.full_name}")
        return self.propagation.propagate_all(template, repos)

    def handle_repository_created(self, payload: Dict[str, Any]) -> Optional[bool]:
        """
        Register a new repository against the template it was created from.

        Returns:
            True if registered, False if skipped, None if not from a template or on error
        """
        repository = payload.get("repository") or {}
        template_data = repository.get("template_repository")
        if not template_data:
            return None

        template = TemplateRepository.from_api(template_data)
        derived = DerivedRepository.from_api(repository)
        logger.info(f"Repository {derived.full_name} created from template {template.full_name}")

        try:
            return self.registry.register_derivation(template, derived)
        except Exception as e:
            logger.error(f"Error registering repository {derived.full_name} with template: {e}", exc_info=True)
            return None
