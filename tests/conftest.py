"""Shared fixtures: an in-memory stand-in for the GitHub API client."""

import base64
import hashlib
from datetime import datetime, timezone

import pytest

from templatebot.application.propagation_service import PropagationService
from templatebot.application.template_registry import TemplateRegistry
from templatebot.domain.repository import DerivedRepository, TemplateRepository
from templatebot.infrastructure.github_client import GitHubAPIError, NotFoundError
from templatebot.infrastructure.registry_store import CustomPropertyStore

ORG = "acme"
TEMPLATE_SHA = "3f786850e387550fdab836ed7e6dc881de23001b"
FIXED_NOW = datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)


def blob_sha(content: bytes) -> str:
    return hashlib.sha1(content).hexdigest()


class FakeRepo:
    def __init__(self, full_name, default_branch="main", is_template=False):
        self.full_name = full_name
        self.default_branch = default_branch
        self.is_template = is_template
        self.branches = {default_branch: {}}  # branch -> {path: bytes}
        self.pulls = []
        self.properties = {}  # None means the properties endpoint 404s
        self.topics = []
        self.commits = []  # newest first: {"sha", "message", "files"}


class FakeGitHub:
    """Mimics the GitHubClient surface the services use, recording every call."""

    def __init__(self):
        self.repos = {}
        self.org_properties = {}
        self.search_results = {}
        self.failures = {}
        self.calls = []

    # -- setup helpers -------------------------------------------------

    def add_repo(self, full_name, **kwargs):
        repo = FakeRepo(full_name, **kwargs)
        self.repos[full_name] = repo
        return repo

    def fail(self, method, full_name, error=None):
        self.failures[(method, full_name)] = error or GitHubAPIError(500, "Server Error")

    def calls_to(self, method):
        return [c for c in self.calls if c[0] == method]

    # -- internals -----------------------------------------------------

    def _repo(self, method, owner, repo, *extra):
        full_name = f"{owner}/{repo}"
        self.calls.append((method, full_name) + extra)
        error = self.failures.get((method, full_name))
        if error is not None:
            raise error
        if full_name not in self.repos:
            raise NotFoundError(404, "Not Found")
        return self.repos[full_name]

    # -- client surface ------------------------------------------------

    def get_repository(self, owner, repo):
        r = self._repo("get_repository", owner, repo)
        return {
            "id": 1,
            "name": repo,
            "full_name": r.full_name,
            "owner": {"login": owner},
            "default_branch": r.default_branch,
            "is_template": r.is_template,
        }

    def list_commits(self, owner, repo, sha=None, per_page=1):
        r = self._repo("list_commits", owner, repo, sha)
        return [{"sha": c["sha"], "commit": {"message": c["message"]}} for c in r.commits[:per_page]]

    def get_commit(self, owner, repo, ref):
        r = self._repo("get_commit", owner, repo, ref)
        for c in r.commits:
            if c["sha"] == ref:
                return {"sha": ref, "files": [dict(f) for f in c["files"]]}
        raise NotFoundError(404, "No commit found")

    def list_branches(self, owner, repo):
        r = self._repo("list_branches", owner, repo)
        return [{"name": name} for name in r.branches]

    def get_ref(self, owner, repo, ref):
        r = self._repo("get_ref", owner, repo, ref)
        branch = ref[len("heads/"):]
        if branch not in r.branches:
            raise NotFoundError(404, "Not Found")
        return {"ref": f"refs/{ref}", "object": {"sha": f"tip-of-{branch}"}}

    def create_ref(self, owner, repo, ref, sha):
        r = self._repo("create_ref", owner, repo, ref, sha)
        branch = ref[len("refs/heads/"):]
        if branch in r.branches:
            raise GitHubAPIError(422, "Reference already exists")
        r.branches[branch] = dict(r.branches[r.default_branch])
        return {"ref": ref, "object": {"sha": sha}}

    def list_pulls(self, owner, repo, state="open", head=None):
        r = self._repo("list_pulls", owner, repo, state)
        return [p for p in r.pulls if p["state"] == state]

    def create_pull(self, owner, repo, title, body, head, base):
        r = self._repo("create_pull", owner, repo, head, base)
        pr = {
            "number": len(r.pulls) + 1,
            "state": "open",
            "title": title,
            "body": body,
            "head": {"ref": head},
            "base": {"ref": base},
            "html_url": f"https://github.com/{r.full_name}/pull/{len(r.pulls) + 1}",
        }
        r.pulls.append(pr)
        return pr

    def get_content(self, owner, repo, path, ref=None):
        r = self._repo("get_content", owner, repo, path, ref)
        if r.commits and ref in {c["sha"] for c in r.commits}:
            files = next(c for c in r.commits if c["sha"] == ref).get("tree", {})
        else:
            files = r.branches.get(ref or r.default_branch, {})
        if path not in files:
            raise NotFoundError(404, "Not Found")
        content = files[path]
        return {
            "type": "file",
            "path": path,
            "sha": blob_sha(content),
            "encoding": "base64",
            "content": base64.b64encode(content).decode("ascii"),
        }

    def get_blob(self, owner, repo, sha):
        raise NotImplementedError

    def create_or_update_file(self, owner, repo, path, content, message, branch, sha=None):
        r = self._repo("create_or_update_file", owner, repo, path, branch, sha)
        files = r.branches[branch]
        if path in files:
            if sha != blob_sha(files[path]):
                raise GitHubAPIError(409, f"{path} does not match {sha}")
        elif sha:
            raise GitHubAPIError(422, "sha wasn't supplied")
        files[path] = content
        return {"content": {"path": path, "sha": blob_sha(content)}}

    def get_custom_property_values(self, owner, repo):
        r = self._repo("get_custom_property_values", owner, repo)
        if r.properties is None:
            raise NotFoundError(404, "Not Found")
        return dict(r.properties)

    def set_custom_property_value(self, owner, repo, property_name, value):
        r = self._repo("set_custom_property_value", owner, repo, property_name, value)
        r.properties = dict(r.properties or {})
        r.properties[property_name] = value

    def list_org_custom_properties(self, org):
        self.calls.append(("list_org_custom_properties", org))
        if org not in self.org_properties:
            raise NotFoundError(404, "Not Found")
        return [{"property_name": name, "value_type": "string"} for name in self.org_properties[org]]

    def get_topics(self, owner, repo):
        return list(self._repo("get_topics", owner, repo).topics)

    def replace_topics(self, owner, repo, names):
        r = self._repo("replace_topics", owner, repo, tuple(names))
        r.topics = list(names)
        return list(names)

    def search_repositories(self, search_query, limit=1000):
        self.calls.append(("search_repositories", search_query))
        return [dict(item) for item in self.search_results.get(search_query, [])]


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def template_repo(github):
    """A template whose latest commit modifies README.md."""
    repo = github.add_repo(f"{ORG}/my-template", is_template=True)
    repo.branches["main"] = {"README.md": b"# Template v2\n"}
    repo.commits.append({
        "sha": TEMPLATE_SHA,
        "message": "Update README\n\nExplain the new layout.",
        "files": [{"filename": "README.md", "status": "modified"}],
        "tree": {"README.md": b"# Template v2\n"},
    })
    return repo


@pytest.fixture
def template(template_repo):
    return TemplateRepository(
        id=1, owner=ORG, name="my-template", full_name=f"{ORG}/my-template", default_branch="main"
    )


def add_derived(github, name, template_name="my-template", readme=b"# Template v1\n"):
    repo = github.add_repo(f"{ORG}/{name}")
    repo.branches["main"] = {"README.md": readme}
    repo.properties = {"template-repo": template_name}
    return DerivedRepository(id=len(github.repos), owner=ORG, name=name, full_name=f"{ORG}/{name}", default_branch="main")


@pytest.fixture
def derived(github):
    return add_derived(github, "service-a")


@pytest.fixture
def registry(github):
    github.org_properties[ORG] = ["template-repo"]
    return TemplateRegistry(CustomPropertyStore(github, "template-repo"))


@pytest.fixture
def service(github, registry):
    return PropagationService(github, registry, branch_prefix="template-update-", clock=lambda: FIXED_NOW)
