"""Release asset downloader with progress tracking and checksum verification.

Components whose release already exists are downloaded instead of rebuilt.
"""

import hashlib
import logging
import tarfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from tqdm import tqdm

from ..artifacts.checksums import parse_checksums
from ..config.versions import Component
from ..errors import MissingArtifact, RegistryUnavailable

logger = logging.getLogger(__name__)


class DownloadError(RegistryUnavailable):
    """Raised when an asset download fails."""

    def __init__(self, url: str, detail: str, status: Optional[int] = None):
        self.url = url
        super().__init__("asset download", f"{url}: {detail}", status)


class ChecksumError(DownloadError):
    """Raised when a downloaded asset does not match its published checksum."""

    def __init__(self, url: str, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(url, f"checksum mismatch (expected {expected}, got {actual})")


class ReleaseAssetDownloader:
    """Downloads release assets for components marked DOWNLOAD."""

    def __init__(
        self,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        chunk_size: int = 8192,
        show_progress: bool = True,
    ):
        """Initialize downloader.

        Args:
            token: Optional GitHub token for private repositories
            session: requests session (created if not provided)
            chunk_size: Size of chunks for downloading and hashing
            show_progress: Whether to show progress bars
        """
        self.token = token
        self.session = session or requests.Session()
        self.chunk_size = chunk_size
        self.show_progress = show_progress

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/octet-stream"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def download(self, url: str, dest_path: Path, checksum: Optional[str] = None) -> Path:
        """Download a file from a URL.

        Args:
            url: URL to download from
            dest_path: Destination file path
            checksum: Optional SHA256 checksum for verification

        Returns:
            Path to the downloaded file

        Raises:
            DownloadError: If download fails
            ChecksumError: If checksum verification fails
        """
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        # Use temporary file during download
        temp_file = dest_path.with_suffix(dest_path.suffix + ".tmp")

        try:
            response = self.session.get(url, headers=self._headers(), stream=True, timeout=30)
            if response.status_code != 200:
                raise DownloadError(url, response.reason or "request failed", response.status_code)

            total_size = int(response.headers.get("content-length", 0))

            progress_bar = None
            if self.show_progress and total_size > 0:
                progress_bar = tqdm(
                    total=total_size,
                    unit="B",
                    unit_scale=True,
                    unit_divisor=1024,
                    desc=f"Downloading {dest_path.name}",
                )

            sha256 = hashlib.sha256()
            with open(temp_file, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if chunk:
                        f.write(chunk)
                        sha256.update(chunk)
                        if progress_bar:
                            progress_bar.update(len(chunk))

            if progress_bar:
                progress_bar.close()

            actual = sha256.hexdigest()
            if checksum and actual.lower() != checksum.lower():
                temp_file.unlink()
                raise ChecksumError(url, checksum, actual)

            if dest_path.exists():
                dest_path.unlink()
            temp_file.rename(dest_path)
            return dest_path

        except requests.RequestException as e:
            if temp_file.exists():
                temp_file.unlink()
            raise DownloadError(url, str(e)) from e

        except Exception:
            if temp_file.exists():
                temp_file.unlink()
            raise

    def fetch_text(self, url: str) -> str:
        try:
            response = self.session.get(url, headers=self._headers(), timeout=30)
        except requests.RequestException as e:
            raise DownloadError(url, str(e)) from e
        if response.status_code != 200:
            raise DownloadError(url, response.reason or "request failed", response.status_code)
        return response.text

    def download_release_assets(
        self,
        component: Component,
        platform: str,
        assets: List[Dict[str, Any]],
        dest_dir: Path,
    ) -> List[Path]:
        """Download the assets of an existing release for one platform.

        Only assets whose name contains the platform are fetched. When the
        release publishes a SHA256SUMS asset, every download is verified
        against it.

        Returns:
            Paths of the downloaded files

        Raises:
            MissingArtifact: If no asset matches the platform
            DownloadError: If a download fails
            ChecksumError: If a digest does not match
        """
        checksums: Dict[str, str] = {}
        for asset in assets:
            if asset.get("name", "").startswith("SHA256SUMS"):
                checksums.update(parse_checksums(self.fetch_text(asset["browser_download_url"])))

        wanted = [
            asset for asset in assets
            if platform in asset.get("name", "") and not asset["name"].startswith("SHA256SUMS")
        ]
        if not wanted:
            raise MissingArtifact(component.name, platform)

        paths = []
        for asset in wanted:
            name = asset["name"]
            if name not in checksums:
                logger.warning(f"No published checksum for {name}, skipping verification")
            paths.append(
                self.download(asset["browser_download_url"], dest_dir / name, checksums.get(name))
            )
        return paths

    def fetch_binaries(
        self,
        component: Component,
        platform: str,
        variant: str,
        binary_ext: str,
        assets: List[Dict[str, Any]],
        dest_dir: Path,
    ) -> Dict[str, Path]:
        """Download the platform archive of an existing release and extract its binaries.

        The `.tar.gz` asset for the platform is chosen; for non-base variants
        the archive name must also mention the variant.

        Returns:
            {binary name: extracted path}

        Raises:
            MissingArtifact: If no archive or declared binary is found
        """
        def matches(name: str) -> bool:
            if platform not in name or not name.endswith(".tar.gz"):
                return False
            experimental = "-experimental" in name
            return experimental if variant != "base" else not experimental

        archives = [a for a in assets if matches(a.get("name", ""))]
        checksum_assets = [a for a in assets if a.get("name", "").startswith("SHA256SUMS")]
        if not archives:
            raise MissingArtifact(component.name, platform)

        download_dir = dest_dir / component.name / f"{platform}-{variant}"
        archive_path = self.download_release_assets(
            component, platform, archives[:1] + checksum_assets, download_dir
        )[0]

        extract_dir = download_dir / "extracted"
        extract_dir.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive_path, "r:gz") as tar:
            tar.extractall(extract_dir, filter="data")

        binaries: Dict[str, Path] = {}
        for name in component.binaries:
            path = extract_dir / f"{name}{binary_ext}"
            if not path.is_file():
                raise MissingArtifact(component.name, platform, str(path))
            binaries[name] = path
        return binaries
