"""
Cargo.toml dependency pinning.

Before a library is published, every internal dependency that points at a
sibling checkout through `path = ...` is rewritten to an exact registry pin
(`version = "=X.Y.Z"`). The rewrite is line based so formatting, comments and
unrelated keys (features, optional, default-features) are preserved.

Handled forms:
    dep = { path = "../dep", features = ["x"] }
    alias = { package = "dep", path = "../dep" }
    dep.path = "../dep"
    dep.version = "0.1.0"
    dep = "0.1.0"
    [dependencies.dep]
    path = "../dep"
"""

import logging
import re
import tomllib
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from ..config.versions import atomic_write_text
from ..errors import PublishFailure

logger = logging.getLogger(__name__)

DEP_KINDS = r"(?:dev-|build-)?dependencies"
# [dependencies], [dev-dependencies], [target.'cfg(unix)'.dependencies], [workspace.dependencies]
DEP_SECTION_RE = re.compile(rf"^\[\s*(?:target\.(?:'[^']*'|\"[^\"]*\"|[^\].]+)\.|workspace\.)?{DEP_KINDS}\s*\]$")
# [dependencies.dep], [target.x.dependencies.dep]
DEP_TABLE_RE = re.compile(
    rf"^\[\s*(?:target\.(?:'[^']*'|\"[^\"]*\"|[^\].]+)\.|workspace\.)?{DEP_KINDS}\.([A-Za-z0-9_\-\"]+)\s*\]$"
)
SECTION_RE = re.compile(r"^\[")
KEY_LINE_RE = re.compile(r"^(\s*)([A-Za-z0-9_\-]+|\"[^\"]+\")(\.[A-Za-z0-9_\-]+)?(\s*=\s*)(.*)$")
PATH_ITEM_RE = re.compile(r"\s*path\s*=\s*\"[^\"]*\"\s*,?")
VERSION_ITEM_RE = re.compile(r"\s*version\s*=\s*\"[^\"]*\"\s*,?")


def _unquote(key: str) -> str:
    return key.strip().strip('"')


def _pin(version: str) -> str:
    return f'"={version}"'


class CargoManifestRewriter:
    """Rewrites and verifies internal dependency pins in Cargo.toml files."""

    def pin_dependency(self, manifest_path: Path, dependency: str, version: str) -> bool:
        """
        Pin a dependency to an exact registry version.

        Args:
            manifest_path: Path to Cargo.toml
            dependency: Package name of the dependency
            version: Version to pin (without the "=" prefix)

        Returns:
            True if the file was changed

        Raises:
            PublishFailure: If the manifest cannot be read
        """
        try:
            original = manifest_path.read_text(encoding="utf-8")
        except OSError as e:
            raise PublishFailure(dependency, reason=f"cannot read {manifest_path}: {e}") from e

        aliases = self._aliases(original, dependency)
        lines = original.splitlines(keepends=True)
        output: List[str] = []

        mode = None  # "section" inside [dependencies], "table" inside [dependencies.<dep>]
        table_matches = False
        table_buffer: List[str] = []
        pinned_keys: Set[str] = set()

        def flush_table() -> None:
            if table_matches:
                output.extend(self._rewrite_table_body(table_buffer, version))
            else:
                output.extend(table_buffer)
            table_buffer.clear()

        for line in lines:
            stripped = line.strip()
            if SECTION_RE.match(stripped) and not stripped.startswith("[["):
                if mode == "table":
                    flush_table()
                table_match = DEP_TABLE_RE.match(stripped)
                if table_match:
                    mode = "table"
                    table_matches = _unquote(table_match.group(1)) in aliases
                    output.append(line)
                    continue
                mode = "section" if DEP_SECTION_RE.match(stripped) else None
                pinned_keys.clear()
                output.append(line)
                continue
            if stripped.startswith("[["):
                if mode == "table":
                    flush_table()
                mode = None
                output.append(line)
                continue

            if mode == "table":
                table_buffer.append(line)
            elif mode == "section":
                output.extend(self._rewrite_section_line(line, aliases, version, pinned_keys))
            else:
                output.append(line)

        if mode == "table":
            flush_table()

        updated = "".join(output)
        if updated == original:
            return False

        atomic_write_text(manifest_path, updated)
        logger.info(f"Pinned {dependency} to ={version} in {manifest_path}")
        return True

    def _aliases(self, text: str, dependency: str) -> Set[str]:
        """Dependency keys that refer to `dependency`, including renames."""
        aliases = {dependency}
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError:
            return aliases
        for key, spec in _iter_dependency_entries(data):
            if isinstance(spec, dict) and spec.get("package") == dependency:
                aliases.add(key)
        return aliases

    def _rewrite_section_line(
        self, line: str, aliases: Set[str], version: str, pinned_keys: Set[str]
    ) -> List[str]:
        match = KEY_LINE_RE.match(line.rstrip("\r\n"))
        if not match:
            return [line]
        indent, key, dotted, equals, value = match.groups()
        if _unquote(key) not in aliases:
            return [line]
        newline = line[len(line.rstrip("\r\n")):]

        if dotted:
            # The first of dep.path / dep.version becomes the pin, later ones are dropped
            if dotted not in (".path", ".version"):
                return [line]
            if _unquote(key) in pinned_keys:
                return []
            pinned_keys.add(_unquote(key))
            return [f"{indent}{key}.version{equals}{_pin(version)}{newline}"]

        value = value.strip()
        if value.startswith("{"):
            return [f"{indent}{key}{equals}{self._rewrite_inline_table(value, version)}{newline}"]
        if value.startswith('"'):
            return [f"{indent}{key}{equals}{_pin(version)}{newline}"]
        return [line]

    def _rewrite_inline_table(self, value: str, version: str) -> str:
        close = value.rfind("}")
        body = value[1:close]
        trailer = value[close + 1:]
        body = PATH_ITEM_RE.sub("", body)
        body = VERSION_ITEM_RE.sub("", body)
        body = body.strip().strip(",").strip()
        items = f"version = {_pin(version)}"
        if body:
            items += f", {body}"
        return f"{{ {items} }}{trailer}"

    def _rewrite_table_body(self, body: List[str], version: str) -> List[str]:
        result: List[str] = []
        pinned = False
        had_version = False
        for line in body:
            stripped = line.strip()
            if re.match(r"^version\s*=", stripped):
                had_version = True
                continue
            if re.match(r"^path\s*=", stripped):
                newline = line[len(line.rstrip("\r\n")):]
                indent = line[: len(line) - len(line.lstrip())]
                result.append(f"{indent}version = {_pin(version)}{newline}")
                pinned = True
                continue
            result.append(line)
        if had_version and not pinned:
            result.insert(0, f"version = {_pin(version)}\n")
        return result

    def verify_pinned(self, manifest_path: Path, dependency: str, version: str) -> None:
        """
        Re-read a manifest and check that `dependency` is pinned to `version`.

        Raises:
            PublishFailure: If any entry still uses a path or a different version
        """
        try:
            data = tomllib.loads(manifest_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise PublishFailure(dependency, reason=f"cannot parse {manifest_path}: {e}") from e

        expected = f"={version}"
        for key, spec in _iter_dependency_entries(data):
            name = spec.get("package", key) if isinstance(spec, dict) else key
            if name != dependency:
                continue
            if isinstance(spec, str):
                actual: Optional[str] = spec
            else:
                if "path" in spec:
                    raise PublishFailure(
                        dependency, reason=f"{manifest_path} still references {dependency} by path"
                    )
                actual = spec.get("version")
            if actual != expected:
                raise PublishFailure(
                    dependency,
                    reason=f"{manifest_path} pins {dependency} to {actual!r}, expected {expected!r}",
                )

    def path_dependencies(self, manifest_path: Path) -> List[str]:
        """Package names still referenced through `path = ...`."""
        data = tomllib.loads(manifest_path.read_text(encoding="utf-8"))
        names = []
        for key, spec in _iter_dependency_entries(data):
            if isinstance(spec, dict) and "path" in spec:
                names.append(spec.get("package", key))
        return names

    def mentions(self, manifest_path: Path, dependency: str) -> bool:
        """Whether the manifest declares `dependency` in any dependency table."""
        data = tomllib.loads(manifest_path.read_text(encoding="utf-8"))
        for key, spec in _iter_dependency_entries(data):
            name = spec.get("package", key) if isinstance(spec, dict) else key
            if name == dependency:
                return True
        return False


def _dependency_tables(data: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    for kind in ("dependencies", "dev-dependencies", "build-dependencies"):
        table = data.get(kind)
        if isinstance(table, dict):
            yield table
    workspace_deps = data.get("workspace", {}).get("dependencies")
    if isinstance(workspace_deps, dict):
        yield workspace_deps
    for target in data.get("target", {}).values():
        if isinstance(target, dict):
            for kind in ("dependencies", "dev-dependencies", "build-dependencies"):
                table = target.get(kind)
                if isinstance(table, dict):
                    yield table


def _iter_dependency_entries(data: Dict[str, Any]) -> Iterator[Tuple[str, Any]]:
    for table in _dependency_tables(data):
        yield from table.items()


def check_dependency_chain(manifest, workspace: Path) -> List[str]:
    """Check that each component's Cargo.toml declares its manifest dependencies.

    Args:
        manifest: VersionsManifest
        workspace: Directory holding the component checkouts

    Returns:
        Warning messages; checkouts that are not present are reported once
    """
    rewriter = CargoManifestRewriter()
    warnings = []
    for component in manifest.components.values():
        cargo_toml = Path(workspace) / component.repo_name / "Cargo.toml"
        if not cargo_toml.is_file():
            warnings.append(f"{component.name}: Cargo.toml not found at {cargo_toml}")
            continue
        try:
            for dep in component.dependencies:
                if not rewriter.mentions(cargo_toml, dep):
                    warnings.append(f"{component.name}: Cargo.toml does not declare dependency '{dep}'")
        except tomllib.TOMLDecodeError as e:
            warnings.append(f"{component.name}: cannot parse {cargo_toml}: {e}")
    return warnings
