"""Library publishing to the package registry."""

from .manifest_rewriter import CargoManifestRewriter, check_dependency_chain
from .publisher import PublishReport, Publisher, publish_lock
from .registry import CratesRegistry, PackageRegistry

__all__ = [
    "CargoManifestRewriter",
    "check_dependency_chain",
    "CratesRegistry",
    "PackageRegistry",
    "PublishReport",
    "Publisher",
    "publish_lock",
]
