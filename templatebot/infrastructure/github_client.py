"""GitHub REST and GraphQL API client with rate limiting and retry logic."""

import base64
import time
import logging
import os
from typing import List, Optional, Dict, Any
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Raised when GitHub answers a request with an error status."""

    def __init__(self, status: Optional[int], message: str, url: str = ""):
        super().__init__(f"GitHub API error ({status}): {message}" + (f" [{url}]" if url else ""))
        self.status = status
        self.message = message
        self.url = url


class NotFoundError(GitHubAPIError):
    """Raised on 404 responses."""
    pass


class RateLimitExceeded(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded."""
    pass


def decode_content(data: Dict[str, Any]) -> bytes:
    """Decode the payload of a contents or blob response."""
    if data.get("encoding") == "base64":
        return base64.b64decode(data.get("content") or "")
    return (data.get("content") or "").encode("utf-8")


class GitHubClient:
    """Client for the GitHub REST and GraphQL APIs with rate limiting and retry mechanisms."""

    # Only reads are retried. A retried write could double-apply (e.g. create a ref twice).

    DEFAULT_API_URL = "https://api.github.com"
    MAX_RETRIES = 5
    RETRY_DELAY_SECONDS = 1
    RETRYABLE_STATUS_CODES = (502, 503, 504)
    TIMEOUT_SECONDS = 30
    PER_PAGE = 100
    MAX_PAGES = 10

    def __init__(self, token: Optional[str] = None, api_url: Optional[str] = None):
        """
        Initialize GitHub client.

        Args:
            token: GitHub token. If None, uses GITHUB_TOKEN env var.
            api_url: REST API root. If None, uses GITHUB_API_URL or api.github.com.
        """
        if token is None:
            token = os.getenv("GITHUB_TOKEN")
        if api_url is None:
            api_url = os.getenv("GITHUB_API_URL", self.DEFAULT_API_URL)

        self.token = token
        self.api_url = api_url.rstrip("/")
        self.graphql_endpoint = f"{self.api_url}/graphql"
        self.headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        # Add authorization header if token is available
        if self.token:
            self.headers["Authorization"] = f"Bearer {self.token}"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _rate_limit_wait(self, response: requests.Response) -> Optional[int]:
        """Seconds to wait if the response signals an exhausted rate limit, else None."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is None or int(remaining) > 0:
            return None
        reset_time = int(response.headers.get("X-RateLimit-Reset", 0))
        return max(reset_time - int(time.time()), 0) + 10

    def _error_for(self, response: requests.Response) -> GitHubAPIError:
        try:
            message = response.json().get("message", response.text)
        except ValueError:
            message = response.text
        if response.status_code == 404:
            return NotFoundError(404, message, response.url)
        return GitHubAPIError(response.status_code, message, response.url)

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        """
        Send a request, retrying reads on network failures and gateway errors.

        Raises:
            NotFoundError: On 404
            RateLimitExceeded: If the rate limit stays exhausted
            GitHubAPIError: On any other error status
            requests.RequestException: If the request fails after retries
        """
        url = path if path.startswith("http") else f"{self.api_url}{path}"
        attempts = self.MAX_RETRIES if method == "GET" else 1

        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            try:
                response = requests.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self.headers,
                    timeout=self.TIMEOUT_SECONDS,
                )
            except requests.exceptions.RequestException as e:
                if last_attempt:
                    raise
                delay = self.RETRY_DELAY_SECONDS * (2 ** attempt)  # Exponential backoff
                logger.warning(f"{method} {url} failed (attempt {attempt + 1}/{attempts}): {e}. Retrying in {delay}s...")
                time.sleep(delay)
                continue

            if response.status_code < 400:
                return response

            if response.status_code in (403, 429):
                wait_time = self._rate_limit_wait(response)
                if wait_time is not None:
                    if last_attempt:
                        raise RateLimitExceeded(response.status_code, "Rate limit exceeded", url)
                    logger.warning(f"Rate limit exceeded. Waiting {wait_time} seconds...")
                    time.sleep(wait_time)
                    continue

            if response.status_code in self.RETRYABLE_STATUS_CODES and not last_attempt:
                delay = self.RETRY_DELAY_SECONDS * (2 ** attempt)
                logger.warning(f"{method} {url} returned {response.status_code}. Retrying in {delay}s...")
                time.sleep(delay)
                continue

            raise self._error_for(response)

        raise GitHubAPIError(None, "Max retries exceeded", url)

    def _rest(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(method, path, **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _paginate(self, path: str, params: Optional[Dict[str, Any]] = None, key: Optional[str] = None) -> List[Any]:
        """Follow Link rel="next" headers, collecting list items (or ``data[key]``)."""
        params = dict(params or {})
        params.setdefault("per_page", self.PER_PAGE)
        items: List[Any] = []
        url: Optional[str] = path
        pages = 0

        while url and pages < self.MAX_PAGES:
            response = self._request("GET", url, params=params)
            data = response.json()
            items.extend(data.get(key, []) if key else data)
            url = response.links.get("next", {}).get("url")
            params = None  # the next link already carries the query string
            pages += 1

        return items

    def _execute_query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Execute a GraphQL query with retry logic.

        Args:
            query: GraphQL query string
            variables: Query variables

        Returns:
            GraphQL response data

        Raises:
            RateLimitExceeded: If rate limit is exceeded
            GitHubAPIError: If GraphQL reports errors
            requests.RequestException: If request fails after retries
        """
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        for attempt in range(self.MAX_RETRIES):
            try:
                response = requests.post(
                    self.graphql_endpoint,
                    json=payload,
                    headers=self.headers,
                    timeout=self.TIMEOUT_SECONDS
                )
            except requests.exceptions.RequestException as e:
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.RETRY_DELAY_SECONDS * (2 ** attempt)
                    logger.warning(f"GraphQL request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. Retrying in {delay}s...")
                    time.sleep(delay)
                    continue
                raise

            if response.status_code == 200:
                data = response.json()

                if "errors" in data:
                    error_messages = [err.get("message", "") for err in data["errors"]]

                    if any("rate limit" in msg.lower() for msg in error_messages):
                        wait_time = self._rate_limit_wait(response)
                        if wait_time is not None and attempt < self.MAX_RETRIES - 1:
                            logger.warning(f"Rate limit approaching. Waiting {wait_time} seconds...")
                            time.sleep(wait_time)
                            continue
                        raise RateLimitExceeded(403, f"Rate limit exceeded: {error_messages}", self.graphql_endpoint)

                    raise GitHubAPIError(200, f"GraphQL errors: {error_messages}", self.graphql_endpoint)

                return data.get("data") or {}

            if response.status_code == 401:
                raise GitHubAPIError(401, "Authentication failed. Check your GitHub token.", self.graphql_endpoint)

            if response.status_code in (403, 429):
                wait_time = self._rate_limit_wait(response)
                if wait_time is not None and attempt < self.MAX_RETRIES - 1:
                    logger.warning(f"Rate limit exceeded. Waiting {wait_time} seconds...")
                    time.sleep(wait_time)
                    continue
                if wait_time is not None:
                    raise RateLimitExceeded(response.status_code, "Rate limit exceeded", self.graphql_endpoint)

            if response.status_code in self.RETRYABLE_STATUS_CODES and attempt < self.MAX_RETRIES - 1:
                delay = self.RETRY_DELAY_SECONDS * (2 ** attempt)
                logger.warning(f"GraphQL request returned {response.status_code}. Retrying in {delay}s...")
                time.sleep(delay)
                continue

            raise self._error_for(response)

        raise GitHubAPIError(None, "Max retries exceeded", self.graphql_endpoint)

    # ------------------------------------------------------------------
    # Repositories, commits, refs
    # ------------------------------------------------------------------

    def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        return self._rest("GET", f"/repos/{owner}/{repo}")

    def list_commits(self, owner: str, repo: str, sha: Optional[str] = None, per_page: int = 1) -> List[Dict[str, Any]]:
        """Newest-first commits on ``sha`` (a branch or commit), a single page."""
        params: Dict[str, Any] = {"per_page": per_page}
        if sha:
            params["sha"] = sha
        return self._rest("GET", f"/repos/{owner}/{repo}/commits", params=params)

    def get_commit(self, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        """Single commit with its complete (paginated) file list."""
        response = self._request("GET", f"/repos/{owner}/{repo}/commits/{ref}", params={"per_page": self.PER_PAGE})
        commit = response.json()
        files = list(commit.get("files") or [])
        next_url = response.links.get("next", {}).get("url")
        pages = 1
        while next_url and pages < self.MAX_PAGES:
            response = self._request("GET", next_url)
            files.extend(response.json().get("files") or [])
            next_url = response.links.get("next", {}).get("url")
            pages += 1
        commit["files"] = files
        return commit

    def list_branches(self, owner: str, repo: str) -> List[Dict[str, Any]]:
        return self._paginate(f"/repos/{owner}/{repo}/branches")

    def get_ref(self, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        """Read a git ref such as ``heads/main``."""
        return self._rest("GET", f"/repos/{owner}/{repo}/git/ref/{ref}")

    def create_ref(self, owner: str, repo: str, ref: str, sha: str) -> Dict[str, Any]:
        """Create a git ref; ``ref`` must be fully qualified (``refs/heads/...``)."""
        return self._rest("POST", f"/repos/{owner}/{repo}/git/refs", json={"ref": ref, "sha": sha})

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    def list_pulls(self, owner: str, repo: str, state: str = "open", head: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"state": state}
        if head:
            params["head"] = head
        return self._paginate(f"/repos/{owner}/{repo}/pulls", params=params)

    def create_pull(self, owner: str, repo: str, title: str, body: str, head: str, base: str) -> Dict[str, Any]:
        return self._rest(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )

    # ------------------------------------------------------------------
    # Contents
    # ------------------------------------------------------------------

    def get_content(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> Dict[str, Any]:
        params = {"ref": ref} if ref else None
        return self._rest("GET", f"/repos/{owner}/{repo}/contents/{quote(path)}", params=params)

    def get_blob(self, owner: str, repo: str, sha: str) -> Dict[str, Any]:
        return self._rest("GET", f"/repos/{owner}/{repo}/git/blobs/{sha}")

    def create_or_update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        sha: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a file, or update it when ``sha`` (the current blob SHA) is given.

        GitHub rejects the write with 409 when ``sha`` is stale.
        """
        body: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": branch,
        }
        if sha:
            body["sha"] = sha
        return self._rest("PUT", f"/repos/{owner}/{repo}/contents/{quote(path)}", json=body)

    # ------------------------------------------------------------------
    # Custom properties and topics
    # ------------------------------------------------------------------

    def get_custom_property_values(self, owner: str, repo: str) -> Dict[str, Any]:
        """All custom property values of a repository as ``{name: value}``."""
        values = self._rest("GET", f"/repos/{owner}/{repo}/properties/values") or []
        return {item["property_name"]: item.get("value") for item in values}

    def set_custom_property_value(self, owner: str, repo: str, property_name: str, value: str) -> None:
        self._rest(
            "PATCH",
            f"/repos/{owner}/{repo}/properties/values",
            json={"properties": [{"property_name": property_name, "value": value}]},
        )

    def list_org_custom_properties(self, org: str) -> List[Dict[str, Any]]:
        """Custom property schema defined by an organization."""
        return self._rest("GET", f"/orgs/{org}/properties/schema") or []

    def get_topics(self, owner: str, repo: str) -> List[str]:
        data = self._rest("GET", f"/repos/{owner}/{repo}/topics") or {}
        return list(data.get("names", []))

    def replace_topics(self, owner: str, repo: str, names: List[str]) -> List[str]:
        data = self._rest("PUT", f"/repos/{owner}/{repo}/topics", json={"names": names}) or {}
        return list(data.get("names", []))

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_repositories(self, search_query: str, limit: int = 1000) -> List[Dict[str, Any]]:
        """
        Search repositories using GraphQL.

        Args:
            search_query: GitHub search query string (e.g., "org:acme props.template-repo:base")
            limit: Maximum number of repositories to return

        Returns:
            Repositories as REST-shaped dicts (id, name, full_name, default_branch)
        """
        query = """
        query($limit: Int!, $cursor: String, $searchQuery: String!) {
            search(query: $searchQuery, type: REPOSITORY, first: $limit, after: $cursor) {
                repositoryCount
                pageInfo {
                    hasNextPage
                    endCursor
                }
                nodes {
                    ... on Repository {
                        databaseId
                        name
                        nameWithOwner
                        defaultBranchRef {
                            name
                        }
                    }
                }
            }
        }
        """

        repositories: List[Dict[str, Any]] = []
        cursor = None

        while len(repositories) < limit:
            variables = {
                "limit": min(limit - len(repositories), 100),
                "cursor": cursor,
                "searchQuery": search_query
            }
            data = self._execute_query(query, variables)

            search_result = data.get("search", {})
            page_info = search_result.get("pageInfo", {})

            for node in search_result.get("nodes", []):
                if not node:
                    continue
                repositories.append({
                    "id": node.get("databaseId"),
                    "name": node["name"],
                    "full_name": node["nameWithOwner"],
                    "default_branch": (node.get("defaultBranchRef") or {}).get("name"),
                })

            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")

        return repositories
