"""
versions.toml parsing, validation and version resolution.

The version manifest is the single declaration of every component taking part
in a release: its version, git tag, dependencies and produced binaries.
Every ordering used by the pipeline (build, publish, manifest rewrite) is
derived from it.

Example versions.toml:
    [versions]
    blvm-consensus = { version = "0.1.0", git_tag = "v0.1.0" }
    blvm-protocol = { version = "0.1.0", git_tag = "v0.1.0", requires = ["blvm-consensus=0.1.0"] }
    blvm = { version = "0.1.0", git_tag = "v0.1.0", requires = ["blvm-node"], binaries = ["blvm"] }

    [metadata]
    anchor = "blvm-consensus"
"""

import os
import re
import tempfile
import tomllib
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import CyclicDependency, MalformedVersion, ManifestError, MissingDependency

# Resolution accepts anything that starts with MAJOR.MINOR.PATCH
VERSION_PREFIX_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)")
# Manifest entries must be exactly MAJOR.MINOR.PATCH
STRICT_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")
REQUIREMENT_RE = re.compile(r"^\s*([A-Za-z0-9_.\-]+)\s*(?:=+\s*(\S+))?\s*$")


class ComponentKind(Enum):
    """Kind of build unit."""

    LIBRARY = "library"
    BINARY = "binary"

    @classmethod
    def from_string(cls, value: str) -> "ComponentKind":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ManifestError(f"Unknown component kind '{value}' (must be 'library' or 'binary')")


@dataclass(frozen=True)
class Requirement:
    """A dependency entry from `requires`, e.g. "blvm-consensus=0.1.0"."""

    name: str
    version: Optional[str] = None

    @classmethod
    def parse(cls, spec: str) -> "Requirement":
        match = REQUIREMENT_RE.match(spec)
        if not match:
            raise ManifestError(f"Invalid requirement '{spec}'")
        return cls(name=match.group(1), version=match.group(2))

    def __str__(self) -> str:
        return f"{self.name}={self.version}" if self.version else self.name


@dataclass(frozen=True)
class Component:
    """A named build unit declared in versions.toml.

    Attributes:
        name: Unique component identifier
        version: Semantic version string (e.g., "0.1.0")
        git_tag: Git tag for the version (e.g., "v0.1.0")
        kind: library or binary
        requires: Declared dependencies, in declaration order
        binaries: Binary names produced by this component
        git_commit: Optional pinned commit hash
        optional: Build failures are downgraded to warnings
        publish: Whether a library is published to the package registry
        repo: Repository/directory name (defaults to the component name)
    """

    name: str
    version: str
    git_tag: str
    kind: ComponentKind = ComponentKind.LIBRARY
    requires: Tuple[Requirement, ...] = ()
    binaries: Tuple[str, ...] = ()
    git_commit: Optional[str] = None
    optional: bool = False
    publish: bool = True
    repo: Optional[str] = None

    @property
    def dependencies(self) -> List[str]:
        """Names of the components this one requires."""
        return [req.name for req in self.requires]

    @property
    def produces_binaries(self) -> bool:
        return bool(self.binaries)

    @property
    def repo_name(self) -> str:
        return self.repo or self.name

    @property
    def is_library(self) -> bool:
        return self.kind == ComponentKind.LIBRARY

    @property
    def publishable(self) -> bool:
        """Libraries flagged for publishing to the package registry."""
        return self.is_library and self.publish


@dataclass
class ValidationResult:
    """Outcome of VersionsManifest.validate()."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def parse_version(version: str, component: Optional[str] = None) -> Tuple[int, int, int]:
    """Parse the MAJOR.MINOR.PATCH prefix of a version string.

    Raises:
        MalformedVersion: If the string does not start with MAJOR.MINOR.PATCH
    """
    match = VERSION_PREFIX_RE.match(version or "")
    if not match:
        raise MalformedVersion(version, component)
    major, minor, patch = (int(part) for part in match.groups())
    return major, minor, patch


def is_valid_semver(version: str) -> bool:
    """Check for a strict X.Y.Z version with numeric parts."""
    return bool(STRICT_VERSION_RE.match(version or ""))


def normalize_version(version: str) -> str:
    """Strip a leading 'v' from a tag-style version."""
    version = version.strip()
    if version.startswith("v") and len(version) > 1 and version[1].isdigit():
        return version[1:]
    return version


class VersionsManifest:
    """
    Parsed versions.toml.

    Components keep the declaration order of the [versions] table; that order
    is the tie-break for every ordering derived from the manifest.

    Usage:
        manifest = VersionsManifest.from_file(Path("versions.toml"))
        result = manifest.validate()
        if not result.is_valid:
            print("\\n".join(result.errors))
    """

    def __init__(
        self,
        components: List[Component],
        metadata: Optional[Dict[str, Any]] = None,
        path: Optional[Path] = None,
    ):
        self.components: Dict[str, Component] = {}
        for component in components:
            if component.name in self.components:
                raise ManifestError(f"Component '{component.name}' declared twice")
            self.components[component.name] = component
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.path = path

    @classmethod
    def from_file(cls, path: Path) -> "VersionsManifest":
        """Load versions.toml from disk.

        Raises:
            ManifestError: If the file is missing or cannot be parsed
        """
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ManifestError(f"Failed to read {path}: {e}") from e
        manifest = cls.from_string(content, source=str(path))
        manifest.path = path
        return manifest

    @classmethod
    def from_string(cls, content: str, source: str = "versions.toml") -> "VersionsManifest":
        try:
            data = tomllib.loads(content)
        except tomllib.TOMLDecodeError as e:
            raise ManifestError(f"Failed to parse {source}: {e}") from e

        versions = data.get("versions")
        if not isinstance(versions, dict):
            raise ManifestError(f"{source} must contain a [versions] table")

        components = [cls._parse_component(name, entry, source) for name, entry in versions.items()]

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ManifestError(f"[metadata] in {source} must be a table")

        return cls(components, metadata)

    @staticmethod
    def _parse_component(name: str, entry: Any, source: str) -> Component:
        if not isinstance(entry, dict):
            raise ManifestError(f"Entry for '{name}' in {source} must be a table")

        version = entry.get("version")
        if not isinstance(version, str):
            raise ManifestError(f"Component '{name}' is missing a version")

        git_tag = entry.get("git_tag") or f"v{version}"
        requires = tuple(Requirement.parse(str(spec)) for spec in entry.get("requires", []))
        binaries = tuple(str(b) for b in entry.get("binaries", []))

        kind_value = entry.get("kind")
        if kind_value:
            kind = ComponentKind.from_string(str(kind_value))
        else:
            kind = ComponentKind.BINARY if binaries else ComponentKind.LIBRARY

        return Component(
            name=name,
            version=version,
            git_tag=str(git_tag),
            kind=kind,
            requires=requires,
            binaries=binaries,
            git_commit=entry.get("git_commit"),
            optional=bool(entry.get("optional", False)),
            publish=bool(entry.get("publish", True)),
            repo=entry.get("repo"),
        )

    def __contains__(self, name: str) -> bool:
        return name in self.components

    def __len__(self) -> int:
        return len(self.components)

    def get(self, name: str) -> Component:
        try:
            return self.components[name]
        except KeyError:
            raise ManifestError(f"Unknown component '{name}'")

    def names(self) -> List[str]:
        """Component names in declaration order."""
        return list(self.components)

    def declarations(self) -> List[Tuple[str, List[str]]]:
        """Ordered (name, dependency names) pairs for DependencyGraph."""
        return [(c.name, c.dependencies) for c in self.components.values()]

    def validate(self) -> ValidationResult:
        """Validate versions, dependency references and acyclicity."""
        # Imported here, graph imports this module for type hints
        from ..graph import DependencyGraph

        result = ValidationResult()

        for component in self.components.values():
            if not is_valid_semver(component.version):
                result.errors.append(
                    f"Repository '{component.name}' has invalid version "
                    f"'{component.version}' (must be X.Y.Z)"
                )

            for req in component.requires:
                if req.name not in self.components:
                    result.errors.append(
                        f"Repository '{component.name}' requires '{req.name}' which is not defined"
                    )
                    continue
                declared = self.components[req.name].version
                if req.version and req.version != declared:
                    result.warnings.append(
                        f"Repository '{component.name}' pins {req.name}={req.version} "
                        f"but {req.name} is declared at {declared}"
                    )

            if component.optional and component.is_library and component.publish:
                result.warnings.append(
                    f"Library '{component.name}' is optional but still marked for publishing"
                )

        try:
            DependencyGraph(self.declarations())
        except CyclicDependency as e:
            result.errors.append(str(e))
        except MissingDependency:
            pass  # already reported above

        return result

    def with_version(self, version: str) -> "VersionsManifest":
        """Return a copy with every component moved to `version`."""
        tag = f"v{version}"
        components = []
        for component in self.components.values():
            requires = tuple(
                Requirement(req.name, version if req.version else None) for req in component.requires
            )
            components.append(replace(component, version=version, git_tag=tag, requires=requires))
        return VersionsManifest(components, self.metadata, self.path)

    def to_toml(self) -> str:
        """Render the manifest back to versions.toml text."""
        lines = ["[versions]"]
        for component in self.components.values():
            fields = [f'version = "{component.version}"', f'git_tag = "{component.git_tag}"']
            if component.git_commit:
                fields.append(f'git_commit = "{component.git_commit}"')
            fields.append(f'kind = "{component.kind.value}"')
            if component.requires:
                fields.append("requires = [" + ", ".join(f'"{req}"' for req in component.requires) + "]")
            if component.binaries:
                fields.append("binaries = [" + ", ".join(f'"{b}"' for b in component.binaries) + "]")
            if component.optional:
                fields.append("optional = true")
            if not component.publish:
                fields.append("publish = false")
            if component.repo:
                fields.append(f'repo = "{component.repo}"')
            lines.append(f"{_toml_key(component.name)} = {{ {', '.join(fields)} }}")

        if self.metadata:
            lines.append("")
            lines.append("[metadata]")
            for key, value in self.metadata.items():
                lines.append(f"{_toml_key(key)} = {_toml_scalar(value)}")

        return "\n".join(lines) + "\n"


def _toml_key(key: str) -> str:
    if re.match(r"^[A-Za-z0-9_\-]+$", key):
        return key
    return '"' + key.replace('"', '\\"') + '"'


def _toml_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


class VersionResolver:
    """
    Resolves the release version from the anchor component.

    The anchor is the foundation library whose version is the canonical
    version source. It comes from [metadata].anchor, or falls back to the
    first declared component without dependencies.
    """

    def __init__(self, manifest: VersionsManifest, anchor: Optional[str] = None):
        self.manifest = manifest
        self.anchor = anchor or self._default_anchor()

    def _default_anchor(self) -> str:
        configured = self.manifest.metadata.get("anchor")
        if configured:
            if configured not in self.manifest:
                raise ManifestError(f"Anchor component '{configured}' is not declared")
            return str(configured)
        for component in self.manifest.components.values():
            if not component.requires:
                return component.name
        raise ManifestError("No anchor component: every component has dependencies")

    def current_version(self) -> str:
        """Version currently recorded for the anchor component."""
        version = self.manifest.get(self.anchor).version
        parse_version(version, self.anchor)
        return version

    def next_version(self) -> str:
        """Current anchor version with the PATCH segment incremented."""
        major, minor, patch = parse_version(self.manifest.get(self.anchor).version, self.anchor)
        return f"{major}.{minor}.{patch + 1}"

    def resolve(self, override: Optional[str] = None) -> str:
        """Return the explicit override, or the auto-incremented next version."""
        if override:
            version = normalize_version(override)
            parse_version(version)
            return version
        return self.next_version()

    @staticmethod
    def tag_for(version: str) -> str:
        return f"v{normalize_version(version)}"


def write_version_bump(path: Path, version: str) -> VersionsManifest:
    """Rewrite versions.toml with every component at `version`.

    This is the single explicit mutation of the manifest; it runs once at the
    end of a successful release and replaces the file atomically.
    """
    version = normalize_version(version)
    parse_version(version)

    path = Path(path)
    bumped = VersionsManifest.from_file(path).with_version(version)
    atomic_write_text(path, bumped.to_toml())
    return bumped


def atomic_write_text(path: Path, content: str) -> None:
    """Write a text file via a temp file in the same directory and os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(temp_name, path)
    except BaseException:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise
