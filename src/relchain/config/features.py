"""
Feature-flag sets per build variant.

A variant is a named feature configuration producing functionally different
builds of the same component: `base` restricts to the production subset and
`experimental` enables the full superset.
"""

from typing import Dict, List, Mapping, Optional

BASE_VARIANT = "base"
EXPERIMENTAL_VARIANT = "experimental"

NODE_BASE_FEATURES = ["sysinfo", "redb", "nix", "libc", "production", "governance", "zmq"]
NODE_EXPERIMENTAL_FEATURES = NODE_BASE_FEATURES + [
    "utxo-commitments",
    "ctv",
    "dandelion",
    "stratum-v2",
    "bip158",
    "sigop",
    "iroh",
    "quinn",
]

# Keys are component names or roles (the last dash-separated segment of a
# component name, e.g. "bllvm-node" -> "node").
DEFAULT_FEATURES: Dict[str, Dict[str, List[str]]] = {
    BASE_VARIANT: {
        "consensus": ["production"],
        "protocol": ["production"],
        "node": list(NODE_BASE_FEATURES),
        "bllvm": list(NODE_BASE_FEATURES),
    },
    EXPERIMENTAL_VARIANT: {
        "consensus": ["production", "utxo-commitments", "ctv"],
        "protocol": ["production", "utxo-commitments", "ctv"],
        "node": list(NODE_EXPERIMENTAL_FEATURES),
        "bllvm": list(NODE_EXPERIMENTAL_FEATURES),
    },
}


def component_role(name: str) -> str:
    """Return the role segment of a component name ("bllvm-node" -> "node")."""
    return name.rsplit("-", 1)[-1]


class FeatureSets:
    """
    Resolves (component, variant) to the cargo feature list.

    Lookup order: exact component name, then component role, then the
    variant's `default` list, then no explicit features (crate defaults).
    """

    def __init__(self, variants: Optional[Mapping[str, Mapping[str, List[str]]]] = None):
        source = DEFAULT_FEATURES if variants is None else variants
        self._variants: Dict[str, Dict[str, List[str]]] = {
            variant: {key: list(features) for key, features in table.items()}
            for variant, table in source.items()
        }

    @property
    def variants(self) -> List[str]:
        return list(self._variants)

    def has_variant(self, variant: str) -> bool:
        return variant in self._variants

    def features_for(self, component: str, variant: str) -> List[str]:
        """
        Get the feature list for a component build.

        Args:
            component: Component name
            variant: Variant name (e.g., "base")

        Returns:
            Feature names; empty means the crate's default features

        Raises:
            KeyError: If the variant is unknown
        """
        if variant not in self._variants:
            available = ", ".join(self._variants) or "none"
            raise KeyError(f"Unknown variant '{variant}'. Available variants: {available}")

        table = self._variants[variant]
        for key in (component, component_role(component), "default"):
            if key in table:
                return list(table[key])
        return []

    def set_features(self, variant: str, component: str, features: List[str]) -> None:
        self._variants.setdefault(variant, {})[component] = list(features)

    @staticmethod
    def variant_suffix(variant: str) -> str:
        """Suffix used in artifact names: "" for base, "-<variant>" otherwise."""
        return "" if variant == BASE_VARIANT else f"-{variant}"
