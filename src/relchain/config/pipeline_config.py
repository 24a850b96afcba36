"""
relchain.ini configuration parser.

This module parses the pipeline settings file and applies environment
overrides. A missing file yields the built-in defaults.

Example relchain.ini:
    [release]
    org = BTCDecoded
    workspace = ..
    artifacts_dir = artifacts
    bundle = bllvm
    platforms = linux-x86_64, windows-x86_64
    build_timeout = 2700

    [platform:windows-x86_64]
    target = x86_64-pc-windows-gnu
    binary_ext = .exe

    [variant:experimental]
    features.bllvm-node = production,utxo-commitments,ctv

    [component:bllvm-commons]
    optional = true
    platforms = linux-x86_64
"""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from ..errors import ManifestError
from .features import DEFAULT_FEATURES, FeatureSets

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_REGISTRY_URL = "https://crates.io"
DEFAULT_PLATFORM = "linux-x86_64"


@dataclass(frozen=True)
class PlatformSpec:
    """A target platform: display name, optional cargo target triple and binary suffix."""

    name: str
    target: Optional[str] = None
    binary_ext: str = ""

    @property
    def is_windows(self) -> bool:
        return self.binary_ext == ".exe"


KNOWN_PLATFORMS: Dict[str, PlatformSpec] = {
    "linux-x86_64": PlatformSpec("linux-x86_64"),
    "linux-aarch64": PlatformSpec("linux-aarch64", "aarch64-unknown-linux-gnu"),
    "windows-x86_64": PlatformSpec("windows-x86_64", "x86_64-pc-windows-gnu", ".exe"),
}


@dataclass
class ComponentSettings:
    """Per-component pipeline overrides from [component:<name>]."""

    optional: Optional[bool] = None
    platforms: Optional[List[str]] = None


@dataclass
class ReleaseConfig:
    """Resolved pipeline settings."""

    org: Optional[str] = None
    workspace: Path = field(default_factory=lambda: Path(".."))
    artifacts_dir: Path = field(default_factory=lambda: Path("artifacts"))
    logs_dir: Optional[Path] = None
    bundle: str = "bllvm"
    build_timeout: int = 2700
    test_timeout: int = 1800
    publish_timeout: int = 600
    registry_poll_interval: float = 10.0
    registry_poll_timeout: float = 300.0
    registry_url: str = DEFAULT_REGISTRY_URL
    api_url: str = DEFAULT_API_URL
    github_token: Optional[str] = None
    registry_token: Optional[str] = None
    build_jobs: Optional[int] = None
    signing_key: Optional[str] = None
    release_repo: Optional[str] = None
    platforms: Dict[str, PlatformSpec] = field(
        default_factory=lambda: {DEFAULT_PLATFORM: KNOWN_PLATFORMS[DEFAULT_PLATFORM]}
    )
    features: FeatureSets = field(default_factory=FeatureSets)
    components: Dict[str, ComponentSettings] = field(default_factory=dict)

    @property
    def log_dir(self) -> Path:
        return self.logs_dir if self.logs_dir is not None else self.artifacts_dir / "logs"

    def get_platform(self, name: str) -> PlatformSpec:
        """
        Look up a platform by name.

        Configured platforms win; well-known names are accepted without
        configuration.

        Raises:
            ManifestError: If the platform is unknown
        """
        if name in self.platforms:
            return self.platforms[name]
        if name in KNOWN_PLATFORMS:
            return KNOWN_PLATFORMS[name]
        available = ", ".join(sorted(set(self.platforms) | set(KNOWN_PLATFORMS)))
        raise ManifestError(f"Unknown platform '{name}'. Available platforms: {available}")

    def component_settings(self, name: str) -> ComponentSettings:
        return self.components.get(name, ComponentSettings())

    def builds_on(self, component: str, platform: str) -> bool:
        """Whether a component is built for a platform at all."""
        allowed = self.component_settings(component).platforms
        return allowed is None or platform in allowed

    @classmethod
    def load(
        cls, ini_path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None
    ) -> "ReleaseConfig":
        """
        Load settings from relchain.ini and the environment.

        Args:
            ini_path: Path to relchain.ini; a missing file means defaults
            env: Environment mapping (defaults to os.environ)

        Returns:
            Resolved ReleaseConfig

        Raises:
            ManifestError: If the file exists but cannot be parsed
        """
        config = cls()
        if ini_path is not None and Path(ini_path).exists():
            config._read_ini(Path(ini_path))
        config._apply_env(os.environ if env is None else env)
        return config

    def _read_ini(self, ini_path: Path) -> None:
        parser = configparser.ConfigParser(
            allow_no_value=True, interpolation=configparser.ExtendedInterpolation()
        )
        try:
            parser.read(ini_path, encoding="utf-8")
        except configparser.Error as e:
            raise ManifestError(f"Failed to parse {ini_path}: {e}") from e

        base_dir = ini_path.parent
        try:
            if parser.has_section("release"):
                self._read_release_section(parser["release"], base_dir)

            variants = {name: dict(table) for name, table in DEFAULT_FEATURES.items()}
            for section in parser.sections():
                kind, _, name = section.partition(":")
                if not name:
                    continue
                if kind == "platform":
                    self.platforms[name] = PlatformSpec(
                        name=name,
                        target=parser[section].get("target") or None,
                        binary_ext=parser[section].get("binary_ext", "") or "",
                    )
                elif kind == "variant":
                    table = variants.setdefault(name, {})
                    for key, value in parser[section].items():
                        if key == "default":
                            table["default"] = _split_list(value)
                        elif key.startswith("features."):
                            table[key[len("features."):]] = _split_list(value)
                elif kind == "component":
                    values = parser[section]
                    optional = values.getboolean("optional") if "optional" in values else None
                    platforms = _split_list(values["platforms"]) if "platforms" in values else None
                    self.components[name] = ComponentSettings(optional, platforms)
            self.features = FeatureSets(variants)

            # [release] platforms selects the default build set, in order
            if parser.has_section("release") and parser["release"].get("platforms"):
                self.platforms = {
                    name: self.get_platform(name) for name in _split_list(parser["release"]["platforms"])
                }
        except (configparser.Error, ValueError) as e:
            raise ManifestError(f"Invalid value in {ini_path}: {e}") from e

    def _read_release_section(self, section: configparser.SectionProxy, base_dir: Path) -> None:
        self.org = section.get("org", self.org)
        if "workspace" in section:
            self.workspace = base_dir / section["workspace"]
        if "artifacts_dir" in section:
            self.artifacts_dir = base_dir / section["artifacts_dir"]
        if "logs_dir" in section:
            self.logs_dir = base_dir / section["logs_dir"]
        self.bundle = section.get("bundle", self.bundle)
        self.build_timeout = section.getint("build_timeout", self.build_timeout)
        self.test_timeout = section.getint("test_timeout", self.test_timeout)
        self.publish_timeout = section.getint("publish_timeout", self.publish_timeout)
        self.registry_poll_interval = section.getfloat(
            "registry_poll_interval", self.registry_poll_interval
        )
        self.registry_poll_timeout = section.getfloat(
            "registry_poll_timeout", self.registry_poll_timeout
        )
        self.registry_url = section.get("registry_url", self.registry_url).rstrip("/")
        self.api_url = section.get("api_url", self.api_url).rstrip("/")
        self.signing_key = section.get("signing_key", self.signing_key)
        self.release_repo = section.get("release_repo", self.release_repo)

    def _apply_env(self, env: Mapping[str, str]) -> None:
        self.github_token = env.get("GITHUB_TOKEN") or env.get("REPO_ACCESS_TOKEN") or self.github_token
        self.org = env.get("RELCHAIN_ORG") or env.get("GITHUB_ORG") or self.org
        if env.get("RELCHAIN_WORKSPACE"):
            self.workspace = Path(env["RELCHAIN_WORKSPACE"])
        if env.get("RELCHAIN_ARTIFACTS_DIR"):
            self.artifacts_dir = Path(env["RELCHAIN_ARTIFACTS_DIR"])
        self.registry_token = env.get("CARGO_REGISTRY_TOKEN") or self.registry_token
        self.signing_key = env.get("RELCHAIN_SIGN_KEY") or self.signing_key

        jobs = env.get("CARGO_BUILD_JOBS", "").strip()
        if jobs and jobs != "0":
            try:
                self.build_jobs = int(jobs)
            except ValueError:
                raise ManifestError(f"CARGO_BUILD_JOBS must be an integer, got '{jobs}'")


def _split_list(value: Optional[str]) -> List[str]:
    """Split a comma/newline separated ini value."""
    if not value:
        return []
    items = []
    for line in value.split("\n"):
        for item in line.split(","):
            item = item.strip()
            if item:
                items.append(item)
    return items
