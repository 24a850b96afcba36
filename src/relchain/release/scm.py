"""Source control host: git tags and GitHub release objects."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from ..build.executor import CommandExecutor
from ..errors import CheckoutFailure, ReleaseCreationError, TagFailure

logger = logging.getLogger(__name__)


class SourceControlHost(Protocol):
    """Operations the release pipeline needs from source control."""

    def clone_or_update(self, repo: str, ref: Optional[str] = None) -> str:
        ...

    def checkout(self, repo: str, ref: str) -> None:
        ...

    def tag_exists(self, repo: str, tag: str) -> bool:
        ...

    def create_tag(self, repo: str, tag: str, message: str) -> None:
        ...

    def create_release(self, repo: str, tag: str, notes: str, assets: Sequence[Path]) -> str:
        ...


class GitHubReleases:
    """Creates GitHub release objects all-or-nothing.

    The release is created as a draft, every asset is uploaded, and only then
    is it published. If any step fails the draft is deleted so no partial
    release is ever visible.
    """

    def __init__(
        self,
        org: Optional[str],
        token: Optional[str],
        api_url: str = "https://api.github.com",
        session: Optional[requests.Session] = None,
        timeout: float = 60,
    ):
        self.org = org
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self, content_type: str = "application/json") -> Dict[str, str]:
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github+json",
            "Content-Type": content_type,
        }

    def _repo_url(self, repo: str) -> str:
        return f"{self.api_url}/repos/{self.org}/{repo}"

    def _existing(self, repo: str, tag: str) -> Optional[Dict[str, Any]]:
        response = self.session.get(
            f"{self._repo_url(repo)}/releases/tags/{tag}", headers=self._headers(), timeout=self.timeout
        )
        if response.status_code == 200:
            return response.json()
        return None

    def create_release(self, repo: str, tag: str, notes: str, assets: Sequence[Path]) -> str:
        """Create and publish a release with all assets attached.

        Returns:
            The release's HTML URL

        Raises:
            ReleaseCreationError: If any step fails (the draft is removed)
        """
        if not self.token or not self.org:
            raise ReleaseCreationError("GitHub token and organization are required to create a release")

        try:
            existing = self._existing(repo, tag)
        except requests.RequestException as e:
            raise ReleaseCreationError(f"Failed to query release {tag} in {repo}: {e}") from e
        if existing is not None and not existing.get("draft", False):
            logger.warning(f"Release {tag} already exists in {repo}, not recreating it")
            return existing.get("html_url", "")

        release_id = None
        try:
            response = self.session.post(
                f"{self._repo_url(repo)}/releases",
                headers=self._headers(),
                json={"tag_name": tag, "name": tag, "body": notes, "draft": True, "prerelease": False},
                timeout=self.timeout,
            )
            if response.status_code != 201:
                raise ReleaseCreationError(
                    f"Creating release {tag} in {repo} failed (HTTP {response.status_code}): {response.text[:500]}"
                )
            release = response.json()
            release_id = release["id"]
            upload_url = release["upload_url"].split("{", 1)[0]

            for asset in assets:
                self._upload(upload_url, Path(asset))

            response = self.session.patch(
                f"{self._repo_url(repo)}/releases/{release_id}",
                headers=self._headers(),
                json={"draft": False},
                timeout=self.timeout,
            )
            if response.status_code != 200:
                raise ReleaseCreationError(
                    f"Publishing release {tag} in {repo} failed (HTTP {response.status_code}): {response.text[:500]}"
                )
            return response.json().get("html_url", release.get("html_url", ""))

        except (ReleaseCreationError, requests.RequestException, OSError, KeyError) as e:
            if release_id is not None:
                self._delete_draft(repo, release_id)
            if isinstance(e, ReleaseCreationError):
                raise
            raise ReleaseCreationError(f"Creating release {tag} in {repo} failed: {e}") from e

    def _upload(self, upload_url: str, asset: Path) -> None:
        logger.info(f"Uploading {asset.name}")
        with open(asset, "rb") as f:
            response = self.session.post(
                upload_url,
                params={"name": asset.name},
                headers=self._headers("application/octet-stream"),
                data=f,
                timeout=self.timeout,
            )
        if response.status_code != 201:
            raise ReleaseCreationError(
                f"Uploading {asset.name} failed (HTTP {response.status_code}): {response.text[:500]}"
            )

    def _delete_draft(self, repo: str, release_id: Any) -> None:
        try:
            response = self.session.delete(
                f"{self._repo_url(repo)}/releases/{release_id}", headers=self._headers(), timeout=self.timeout
            )
            if response.status_code not in (204, 404):
                logger.error(f"Failed to delete draft release {release_id} (HTTP {response.status_code})")
        except requests.RequestException as e:
            logger.error(f"Failed to delete draft release {release_id}: {e}")


class GitSourceControl:
    """Local git checkouts under the workspace, plus GitHub for release objects."""

    def __init__(
        self,
        workspace: Path,
        executor: Optional[CommandExecutor] = None,
        releases: Optional[GitHubReleases] = None,
        remote: str = "origin",
        push: bool = True,
        timeout: float = 300,
        org: Optional[str] = None,
        clone_url: str = "https://github.com",
    ):
        self.workspace = workspace
        self.executor = executor or CommandExecutor()
        self.releases = releases
        self.remote = remote
        self.push = push
        self.timeout = timeout
        self.org = org
        self.clone_url = clone_url.rstrip("/")

    def repo_dir(self, repo: str) -> Path:
        return self.workspace / repo

    def _git(self, repo: str, args: List[str]):
        return self.executor.run(["git", *args], cwd=self.repo_dir(repo), timeout=self.timeout)

    def repo_url(self, repo: str) -> str:
        return f"{self.clone_url}/{self.org}/{repo}.git"

    def clone_or_update(self, repo: str, ref: Optional[str] = None) -> str:
        """Make `repo` available in the workspace, optionally at `ref`.

        A missing checkout is cloned from the organization. An existing one
        fetches tags and checks out `ref`, or without a ref is fast-forwarded
        from the remote when possible.

        Returns:
            "cloned" or "updated"

        Raises:
            CheckoutFailure: If cloning, fetching or the checkout fails
        """
        repo_dir = self.repo_dir(repo)
        if repo_dir.is_dir():
            if ref:
                result = self._git(repo, ["fetch", "--tags", self.remote])
                if not result.success:
                    raise CheckoutFailure(repo, f"git fetch failed: {result.output.strip()}")
                self.checkout(repo, ref)
            else:
                result = self._git(repo, ["pull", "--ff-only", self.remote])
                if not result.success:
                    logger.warning(f"Could not update {repo}, using it as is: {result.output.strip()}")
            logger.info(f"Repository ready: {repo}")
            return "updated"

        if not self.org:
            raise CheckoutFailure(repo, f"{repo_dir} does not exist and no organization is configured")
        url = self.repo_url(repo)
        self.workspace.mkdir(parents=True, exist_ok=True)
        logger.info(f"Cloning {url}")
        result = self.executor.run(["git", "clone", url, repo], cwd=self.workspace, timeout=self.timeout)
        if not result.success:
            raise CheckoutFailure(repo, f"git clone {url} failed: {result.output.strip()}")
        if ref:
            self.checkout(repo, ref)
        return "cloned"

    def checkout(self, repo: str, ref: str) -> None:
        result = self._git(repo, ["checkout", ref])
        if not result.success:
            raise CheckoutFailure(repo, f"{ref} not found: {result.output.strip()}")

    def head_commit(self, repo: str) -> str:
        result = self._git(repo, ["rev-parse", "HEAD"])
        return result.output.strip() if result.success else ""

    def _local_tag_exists(self, repo: str, tag: str) -> bool:
        result = self._git(repo, ["rev-parse", "-q", "--verify", f"refs/tags/{tag}"])
        return result.returncode == 0

    def tag_exists(self, repo: str, tag: str) -> bool:
        """Whether the tag is already in place.

        With pushing enabled this asks the remote, so a tag that was created
        locally but never pushed still counts as missing.

        Raises:
            TagFailure: If the checkout is missing or the remote cannot be queried
        """
        if not self.repo_dir(repo).is_dir():
            raise TagFailure(repo, f"repository not found: {self.repo_dir(repo)}")
        if not self.push:
            return self._local_tag_exists(repo, tag)
        result = self._git(repo, ["ls-remote", "--tags", self.remote, f"refs/tags/{tag}"])
        if not result.success:
            raise TagFailure(repo, f"git ls-remote failed: {result.output.strip()}")
        return bool(result.output.strip())

    def create_tag(self, repo: str, tag: str, message: str) -> None:
        """Create an annotated tag and push it.

        A tag left behind locally by an earlier failed push is pushed as is.

        Raises:
            TagFailure: If tagging or pushing fails
        """
        if self.push and self._local_tag_exists(repo, tag):
            logger.info(f"Tag {tag} already exists locally in {repo}, pushing it")
        else:
            result = self._git(repo, ["tag", "-a", tag, "-m", message])
            if not result.success:
                raise TagFailure(repo, f"git tag failed: {result.output.strip()}")
        if self.push:
            result = self._git(repo, ["push", self.remote, tag])
            if not result.success:
                raise TagFailure(repo, f"git push failed: {result.output.strip()}")

    def create_release(self, repo: str, tag: str, notes: str, assets: Sequence[Path]) -> str:
        if self.releases is None:
            raise ReleaseCreationError("No release host configured")
        return self.releases.create_release(repo, tag, notes, assets)
