"""GitHub release index.

Answers "does a release of component C at tag T already exist for platform
P?" by querying the GitHub REST API, and lists release assets for download.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..config.versions import Component
from ..errors import RegistryUnavailable

logger = logging.getLogger(__name__)

REGISTRY_NAME = "GitHub releases"


class GitHubReleaseIndex:
    """Release index backed by `GET /repos/{org}/{repo}/releases/tags/{tag}`.

    Status handling:
        404 -> no release
        200 -> release exists; binary components additionally need an asset
               whose name contains the platform
        anything else, network errors, missing token -> RegistryUnavailable
    """

    def __init__(
        self,
        org: Optional[str],
        token: Optional[str],
        api_url: str = "https://api.github.com",
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.org = org
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github+json",
        }

    def get_release(self, component: Component, tag: str) -> Optional[Dict[str, Any]]:
        """Fetch the release object for a tag.

        Returns:
            Release JSON, or None if the release does not exist

        Raises:
            RegistryUnavailable: On missing credentials, network errors or
                unexpected status codes
        """
        if not self.token:
            raise RegistryUnavailable(REGISTRY_NAME, "no GitHub token configured (set GITHUB_TOKEN)")
        if not self.org:
            raise RegistryUnavailable(REGISTRY_NAME, "no organization configured (set RELCHAIN_ORG)")

        url = f"{self.api_url}/repos/{self.org}/{component.repo_name}/releases/tags/{tag}"
        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise RegistryUnavailable(REGISTRY_NAME, f"GET {url} failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise RegistryUnavailable(
                REGISTRY_NAME, f"GET {url}: {response.text[:500]}", status=response.status_code
            )
        try:
            return response.json()
        except ValueError as e:
            raise RegistryUnavailable(REGISTRY_NAME, f"GET {url} returned invalid JSON: {e}") from e

    def release_exists(self, component: Component, tag: str, platform: str) -> bool:
        """Whether a usable release exists for the component on this platform."""
        release = self.get_release(component, tag)
        if release is None:
            logger.debug(f"No release {tag} for {component.name}")
            return False
        if not component.produces_binaries:
            return True
        return any(platform in asset.get("name", "") for asset in release.get("assets", []))

    def list_assets(self, component: Component, tag: str) -> List[Dict[str, Any]]:
        """Assets attached to a release (empty when the release does not exist)."""
        release = self.get_release(component, tag)
        if release is None:
            return []
        return list(release.get("assets", []))
