"""
Media Catalog - immutable lookup from AssetKey to sound locators.

Built once from a nested mapping (``category -> name -> locator | [locators]``);
deeper dict nesting is flattened into dotted names. Priority tiers are
assigned once, when the PriorityTable is built against the catalog.
"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

from .errors import AssetNotFoundError, CatalogError
from .models import AssetKey, PriorityTier

logger = logging.getLogger(__name__)

Locators = Union[str, Tuple[str, ...]]


class MediaCatalog:
    """
    Read-only map of every playable clip.

    A tuple entry is a variant group: each element is addressable as
    ``AssetKey(category, name, i)``. A plain string is a single clip,
    addressed as ``AssetKey(category, name)``.
    """

    def __init__(self, mapping: Mapping):
        entries: Dict[Tuple[str, str], Locators] = {}
        if not isinstance(mapping, Mapping):
            raise CatalogError("Catalog must be a mapping of categories")

        for category, names in mapping.items():
            if not isinstance(names, Mapping):
                raise CatalogError(f"Category {category!r} must map names to locators")
            self._flatten(category, names, "", entries)

        self._entries = MappingProxyType(entries)
        self._missing: set = set()
        logger.debug(f"Catalog built: {len(entries)} entries, {len(self.keys())} clips")

    def _flatten(self, category: str, node: Mapping, prefix: str, out: dict) -> None:
        for name, value in node.items():
            full_name = f"{prefix}{name}"
            if isinstance(value, Mapping):
                self._flatten(category, value, f"{full_name}.", out)
            elif isinstance(value, str):
                if not value:
                    raise CatalogError(f"Empty locator for {category}.{full_name}")
                out[(category, full_name)] = value
            elif isinstance(value, (list, tuple)):
                if not value:
                    raise CatalogError(f"Empty variant group {category}.{full_name}")
                if not all(isinstance(item, str) and item for item in value):
                    raise CatalogError(f"Variant group {category}.{full_name} has invalid locators")
                out[(category, full_name)] = tuple(value)
            else:
                raise CatalogError(
                    f"Unsupported locator type for {category}.{full_name}: {type(value).__name__}"
                )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def has(self, category: str, name: str) -> bool:
        return (category, name) in self._entries

    def entry(self, category: str, name: str) -> Locators:
        """Raw entry for a category/name; raises AssetNotFoundError."""
        try:
            return self._entries[(category, name)]
        except KeyError:
            raise AssetNotFoundError(category, name) from None

    def is_group(self, category: str, name: str) -> bool:
        return isinstance(self.entry(category, name), tuple)

    def variant_count(self, category: str, name: str) -> int:
        """Number of variants (1 for single clips)."""
        value = self.entry(category, name)
        return len(value) if isinstance(value, tuple) else 1

    def key_for(self, category: str, name: str, index: Optional[int] = None) -> AssetKey:
        """
        Build the canonical key for a lookup.

        Single clips always get ``index=None``; groups require an index in range.
        """
        value = self.entry(category, name)
        if not isinstance(value, tuple):
            return AssetKey(category, name)
        if index is None:
            index = 0
        if not 0 <= index < len(value):
            raise AssetNotFoundError(category, name, index)
        return AssetKey(category, name, index)

    def locator(self, key: AssetKey) -> str:
        """Source locator for a key; raises AssetNotFoundError."""
        value = self.entry(key.category, key.name)
        if isinstance(value, tuple):
            index = 0 if key.index is None else key.index
            if not 0 <= index < len(value):
                raise AssetNotFoundError(key.category, key.name, key.index)
            return value[index]
        if key.index not in (None, 0):
            raise AssetNotFoundError(key.category, key.name, key.index)
        return value

    def find(self, category: str, name: str) -> Optional[Locators]:
        """Like entry() but logs a missing key once and returns None."""
        value = self._entries.get((category, name))
        if value is None and (category, name) not in self._missing:
            self._missing.add((category, name))
            logger.warning(f"Sound not found: {category}.{name}")
        return value

    def keys(self) -> List[AssetKey]:
        """Every addressable clip, in catalog order."""
        result = []
        for (category, name), value in self._entries.items():
            if isinstance(value, tuple):
                result.extend(AssetKey(category, name, i) for i in range(len(value)))
            else:
                result.append(AssetKey(category, name))
        return result

    def keys_for_locator(self, filename: str) -> List[AssetKey]:
        """Keys whose locator ends with ``filename`` (or whose name equals it)."""
        found = []
        for key in self.keys():
            locator = self.locator(key)
            if locator.split("/")[-1] == filename or key.name == filename:
                found.append(key)
        return found

    def __contains__(self, key: AssetKey) -> bool:
        try:
            self.locator(key)
        except AssetNotFoundError:
            return False
        return True

    def __len__(self) -> int:
        return len(self._entries)


def load_catalog(path: Union[str, Path]) -> MediaCatalog:
    """
    Load a catalog mapping from a JSON file.

    Args:
        path: JSON file containing ``{category: {name: file | [files]}}``

    Raises:
        CatalogError: if the file is unreadable or malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as fp:
            data = json.load(fp)
    except (OSError, ValueError) as e:
        raise CatalogError(f"Could not read catalog {path}: {e}") from e
    return MediaCatalog(data)


class PriorityTable:
    """
    Tier assignment for every key in a catalog.

    Built once from three lists of ``category.name`` / ``category.name.i``
    entries. The most specific match wins; unlisted keys are BACKGROUND.
    """

    LIST_TIERS = (
        ("immediate", PriorityTier.IMMEDIATE),
        ("critical", PriorityTier.CRITICAL),
        ("important", PriorityTier.IMPORTANT),
    )

    def __init__(self, catalog: MediaCatalog, priority_lists: Optional[Mapping] = None):
        priority_lists = priority_lists or {}
        group_rules: Dict[AssetKey, PriorityTier] = {}
        exact_rules: Dict[AssetKey, PriorityTier] = {}

        for list_name, tier in self.LIST_TIERS:
            for raw in priority_lists.get(list_name, ()):
                try:
                    key = AssetKey.parse(raw)
                except ValueError:
                    logger.warning(f"Ignoring malformed priority entry: {raw!r}")
                    continue
                if not catalog.has(key.category, key.name) or key not in catalog:
                    logger.warning(f"Priority entry not in catalog: {raw}")
                    continue
                rules = group_rules if key.index is None else exact_rules
                # First (highest) tier listed wins
                rules.setdefault(key, tier)

        tiers: Dict[AssetKey, PriorityTier] = {}
        for key in catalog.keys():
            tier = exact_rules.get(key) or group_rules.get(key.group)
            tiers[key] = tier or PriorityTier.BACKGROUND

        self._tiers = MappingProxyType(tiers)
        self._group_rules = MappingProxyType(group_rules)

    def tier_of(self, key: AssetKey) -> PriorityTier:
        tier = self._tiers.get(key)
        if tier is None:
            tier = self._group_rules.get(key.group, PriorityTier.BACKGROUND)
        return tier

    def group_tier(self, category: str, name: str) -> PriorityTier:
        """Tier assigned to a whole group (only group-level rules count)."""
        return self._group_rules.get(AssetKey(category, name), PriorityTier.BACKGROUND)

    def keys_in(self, tier: PriorityTier) -> List[AssetKey]:
        return [key for key, value in self._tiers.items() if value is tier]

    def counts(self) -> Dict[PriorityTier, int]:
        counts = {tier: 0 for tier in PriorityTier}
        for tier in self._tiers.values():
            counts[tier] += 1
        return counts
