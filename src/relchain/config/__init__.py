"""Configuration parsing modules for relchain."""

from .features import BASE_VARIANT, EXPERIMENTAL_VARIANT, FeatureSets
from .pipeline_config import KNOWN_PLATFORMS, ComponentSettings, PlatformSpec, ReleaseConfig
from .versions import (
    Component,
    ComponentKind,
    Requirement,
    ValidationResult,
    VersionResolver,
    VersionsManifest,
    parse_version,
    write_version_bump,
)

__all__ = [
    "BASE_VARIANT",
    "EXPERIMENTAL_VARIANT",
    "FeatureSets",
    "KNOWN_PLATFORMS",
    "ComponentSettings",
    "PlatformSpec",
    "ReleaseConfig",
    "Component",
    "ComponentKind",
    "Requirement",
    "ValidationResult",
    "VersionResolver",
    "VersionsManifest",
    "parse_version",
    "write_version_bump",
]
