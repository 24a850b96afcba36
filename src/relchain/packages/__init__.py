"""Access to previously published releases.

This package queries the release index for existing component releases and
downloads their assets so unchanged components are not rebuilt.
"""

from .downloader import ChecksumError, DownloadError, ReleaseAssetDownloader
from .release_index import GitHubReleaseIndex

__all__ = [
    "ChecksumError",
    "DownloadError",
    "GitHubReleaseIndex",
    "ReleaseAssetDownloader",
]
