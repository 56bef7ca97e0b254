"""Application service tracking which repositories were created from which template."""

import logging
from typing import List

from templatebot.domain.repository import DerivedRepository, TemplateRepository
from templatebot.infrastructure.registry_store import RegistryStore

logger = logging.getLogger(__name__)


class RegistryUnavailable(Exception):
    """Raised when the organization owning a template cannot be determined."""
    pass


class TemplateRegistry:
    """Looks up and records template -> derived repository associations.

    Stateless: all associations live on GitHub, read and written through the store.
    """

    def __init__(self, store: RegistryStore):
        """
        Initialize template registry.

        Args:
            store: Association backend selected by configuration
        """
        self.store = store

    def lookup_derived_repos(self, template: TemplateRepository) -> List[DerivedRepository]:
        """
        Find repositories in the template's organization associated with it.

        Args:
            template: Template repository that changed

        Returns:
            Derived repositories, empty when none match or the organization
            has no association schema

        Raises:
            RegistryUnavailable: If the template's organization is unknown
        """
        org = template.owner
        if not org:
            raise RegistryUnavailable(f"Unable to determine organization for template {template.full_name}")

        if not template.name:
            logger.warning("Template name is empty, cannot search for repositories")
            return []

        if not self.store.is_supported(org):
            logger.info(f"Organization {org} has no association schema, no repositories to update")
            return []

        logger.info(f"Searching for repositories in {org} with template name {template.name}")
        repos = [
            repo for repo in self.store.search(org, template.name)
            if repo.full_name.lower() != template.full_name.lower()
        ]

        if repos:
            logger.info(f"Found {len(repos)} repositories using template {template.name}")
        else:
            logger.info(f"No repositories found using template {template.name}")
        return repos

    def verify_association(self, template: TemplateRepository, derived: DerivedRepository) -> bool:
        """Re-read the association of ``derived``; never trusts an earlier lookup."""
        return self.store.is_associated(derived, template.name)

    def register_derivation(self, template: TemplateRepository, derived: DerivedRepository) -> bool:
        """
        Record that ``derived`` was created from ``template``.

        The association schema is never created here. When the organization
        does not define it, registration is skipped and logged.

        Returns:
            True if the association was written
        """
        if not self.store.is_writable(derived.owner):
            logger.info(
                f"Association schema doesn't exist in organization {derived.owner}, "
                f"skipping registration of {derived.full_name}"
            )
            return False

        logger.debug(f"Registering repository {derived.full_name} with template {template.name}")
        self.store.write_association(derived, template.name)
        logger.info(f"Registered {derived.full_name} with template {template.name}")
        return True
