"""Storage backends for the derived-repository -> template association.

Two mechanisms exist on GitHub:

* a repository custom property whose value is the template's bare name
* a topic of the form ``<prefix><template-name>`` (legacy/fallback)

Exactly one is authoritative per deployment and is chosen by configuration.
``MigratingStore`` reads both so an organization can move between them.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from templatebot.config import Settings
from templatebot.domain.repository import DerivedRepository
from templatebot.infrastructure.github_client import GitHubClient, NotFoundError

logger = logging.getLogger(__name__)


class RegistryStore(ABC):
    """Read/write interface over one association mechanism."""

    @abstractmethod
    def is_supported(self, org: str) -> bool:
        """Whether ``org`` can hold associations with this mechanism."""

    @abstractmethod
    def search(self, org: str, template_name: str) -> List[DerivedRepository]:
        """Repositories in ``org`` associated with ``template_name``."""

    @abstractmethod
    def read_association(self, repo: DerivedRepository) -> Optional[str]:
        """Template name ``repo`` is associated with, or None."""

    @abstractmethod
    def write_association(self, repo: DerivedRepository, template_name: str) -> None:
        """Persist the association. Setting the same value twice is harmless."""

    def is_associated(self, repo: DerivedRepository, template_name: str) -> bool:
        """Re-read the stored value and compare it with ``template_name``."""
        return self.read_association(repo) == template_name

    def is_writable(self, org: str) -> bool:
        """Whether associations may be written in ``org``."""
        return self.is_supported(org)


class CustomPropertyStore(RegistryStore):
    """Association held in a single-valued repository custom property."""

    def __init__(self, client: GitHubClient, property_name: str):
        self.client = client
        self.property_name = property_name

    def is_supported(self, org: str) -> bool:
        try:
            schema = self.client.list_org_custom_properties(org)
        except NotFoundError:
            # Not an organization, or custom properties unavailable
            return False
        return any(prop.get("property_name") == self.property_name for prop in schema)

    def search(self, org: str, template_name: str) -> List[DerivedRepository]:
        query = f"org:{org} props.{self.property_name}:{template_name}"
        logger.debug(f"Executing search query: {query}")
        return [DerivedRepository.from_api(item) for item in self.client.search_repositories(query)]

    def read_association(self, repo: DerivedRepository) -> Optional[str]:
        try:
            values = self.client.get_custom_property_values(repo.owner, repo.name)
        except NotFoundError:
            logger.info(f"Repository {repo.full_name} doesn't have any custom properties")
            return None
        value = values.get(self.property_name)
        return value if isinstance(value, str) and value else None

    def write_association(self, repo: DerivedRepository, template_name: str) -> None:
        self.client.set_custom_property_value(repo.owner, repo.name, self.property_name, template_name)


class TopicStore(RegistryStore):
    """Association held in a ``<prefix><template-name>`` repository topic."""

    def __init__(self, client: GitHubClient, topic_prefix: str):
        self.client = client
        self.topic_prefix = topic_prefix.lower()

    def topic_for(self, template_name: str) -> str:
        # Topics are lowercase on GitHub
        return f"{self.topic_prefix}{template_name}".lower()

    def is_supported(self, org: str) -> bool:
        return True

    def search(self, org: str, template_name: str) -> List[DerivedRepository]:
        query = f"org:{org} topic:{self.topic_for(template_name)}"
        logger.debug(f"Executing search query: {query}")
        return [DerivedRepository.from_api(item) for item in self.client.search_repositories(query)]

    def _topics(self, repo: DerivedRepository) -> List[str]:
        try:
            return self.client.get_topics(repo.owner, repo.name)
        except NotFoundError:
            return []

    def read_association(self, repo: DerivedRepository) -> Optional[str]:
        """First prefixed topic, minus the prefix.

        Unrelated topics may share the prefix (``template-engine``), so use
        ``is_associated`` to check a specific template.
        """
        for topic in self._topics(repo):
            if topic.startswith(self.topic_prefix) and len(topic) > len(self.topic_prefix):
                return topic[len(self.topic_prefix):]
        return None

    def is_associated(self, repo: DerivedRepository, template_name: str) -> bool:
        return self.topic_for(template_name) in self._topics(repo)

    def write_association(self, repo: DerivedRepository, template_name: str) -> None:
        """Add the template topic. Existing topics are kept, whatever their prefix."""
        topics = self.client.get_topics(repo.owner, repo.name)
        wanted = self.topic_for(template_name)
        if wanted in topics:
            return
        self.client.replace_topics(repo.owner, repo.name, topics + [wanted])


class MigratingStore(RegistryStore):
    """Reads from ``primary`` then ``secondary``; writes only to ``primary``.

    An org is searchable when either store supports it, but writable only
    when the primary does.
    """

    def __init__(self, primary: RegistryStore, secondary: RegistryStore):
        self.primary = primary
        self.secondary = secondary

    def is_supported(self, org: str) -> bool:
        return self.primary.is_supported(org) or self.secondary.is_supported(org)

    def is_writable(self, org: str) -> bool:
        return self.primary.is_writable(org)

    def search(self, org: str, template_name: str) -> List[DerivedRepository]:
        found = {}
        stores = [self.secondary]
        if self.primary.is_supported(org):
            stores.insert(0, self.primary)
        for store in stores:
            for repo in store.search(org, template_name):
                found.setdefault(repo.full_name, repo)
        return list(found.values())

    def read_association(self, repo: DerivedRepository) -> Optional[str]:
        value = self.primary.read_association(repo)
        if value is None:
            value = self.secondary.read_association(repo)
        return value

    def is_associated(self, repo: DerivedRepository, template_name: str) -> bool:
        value = self.primary.read_association(repo)
        if value is not None:
            return value == template_name
        return self.secondary.is_associated(repo, template_name)

    def write_association(self, repo: DerivedRepository, template_name: str) -> None:
        self.primary.write_association(repo, template_name)


def build_registry_store(client: GitHubClient, settings: Settings) -> RegistryStore:
    """Pick the association mechanism named by ``settings.association_backend``."""
    properties = CustomPropertyStore(client, settings.property_name)
    if settings.association_backend == "property":
        return properties
    topics = TopicStore(client, settings.topic_prefix)
    if settings.association_backend == "topic":
        return topics
    return MigratingStore(properties, topics)
