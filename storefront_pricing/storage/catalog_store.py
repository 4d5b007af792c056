"""
Catalog storage module.

Stores catalog items (root entities with their variants). Writes carry
an expected version so concurrent writers cannot silently overwrite each
other, and the root plus all of its variants are updated together.
"""

import json
import logging
import threading
from decimal import Decimal
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from storefront_pricing.exceptions import Conflict, NotFound
from storefront_pricing.models import DEFAULT_BASE_MARKUP_PCT, CatalogItem, PriceFields

logger = logging.getLogger(__name__)


class InMemoryCatalogStore:
    """
    Thread-safe in-memory catalog.

    Readers always get copies; the stored items are only changed through
    update() and put().
    """

    def __init__(self, items: Optional[Iterable[CatalogItem]] = None):
        self._lock = threading.Lock()
        self._items: dict[str, CatalogItem] = {}
        for item in items or []:
            self._items[item.id] = item.clone()

    def get(self, item_id: str) -> CatalogItem:
        """
        Get a catalog item by id.

        Raises:
            NotFound: If the item does not exist.
        """
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise NotFound("catalog item", item_id)
            return item.clone()

    def list_all(self) -> List[CatalogItem]:
        with self._lock:
            return [item.clone() for item in self._items.values()]

    def list_active(self) -> List[CatalogItem]:
        """Active root items, with inactive variants dropped."""
        items = []
        for item in self.list_all():
            if not item.is_active:
                continue
            item.variants = [v for v in item.variants if v.is_active]
            items.append(item)
        return items

    def find_entity_owner(self, entity_id: str) -> Optional[str]:
        """Return the root item id that owns an entity (root or variant) id."""
        with self._lock:
            if entity_id in self._items:
                return entity_id
            for item in self._items.values():
                if item.find_variant(entity_id) is not None:
                    return item.id
        return None

    def put(self, item: CatalogItem) -> None:
        """Insert or replace an item unconditionally."""
        with self._lock:
            self._items[item.id] = item.clone()

    def update(
        self,
        item_id: str,
        root: Optional[PriceFields],
        variants: Optional[Mapping[str, PriceFields]] = None,
        expected_version: Optional[int] = None,
    ) -> CatalogItem:
        """
        Atomically write price fields for a root item and its variants.

        Args:
            item_id: Root item id.
            root: New root price fields, or None to leave the root as is.
            variants: Variant id -> new price fields.
            expected_version: Version the caller read; None skips the check.

        Returns:
            CatalogItem: Copy of the updated item.

        Raises:
            NotFound: If the item or one of the variants does not exist.
            Conflict: If the stored version differs from expected_version.
        """
        variants = variants or {}
        with self._lock:
            current = self._items.get(item_id)
            if current is None:
                raise NotFound("catalog item", item_id)
            if expected_version is not None and current.version != expected_version:
                raise Conflict(item_id, expected_version, current.version)

            updated = current.clone()
            if root is not None:
                updated.apply_price_fields(root)
            for variant_id, fields in variants.items():
                variant = updated.find_variant(variant_id)
                if variant is None:
                    raise NotFound("variant", variant_id)
                variant.apply_price_fields(fields)
            updated.version = current.version + 1

            self._items[item_id] = updated
            result = updated.clone()

        self._on_write()
        return result

    def _on_write(self) -> None:
        """Hook for persistent subclasses."""

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class JsonCatalogStore(InMemoryCatalogStore):
    """
    Catalog persisted as a JSON file.

    The whole catalog is rewritten after every successful update. Rows
    without a base markup load with default_base_markup_pct.
    """

    def __init__(
        self,
        path: Path | str,
        default_base_markup_pct: Decimal | float = DEFAULT_BASE_MARKUP_PCT,
    ):
        self.path = Path(path)
        self.default_base_markup_pct = default_base_markup_pct
        self._save_lock = threading.Lock()
        super().__init__(self._load())

    def _load(self) -> List[CatalogItem]:
        if not self.path.exists():
            logger.warning(f"Catalog file not found: {self.path}. Starting empty.")
            return []
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        rows = data.get("items", []) if isinstance(data, dict) else data
        items = [
            CatalogItem.from_dict(row, default_base_markup_pct=self.default_base_markup_pct)
            for row in rows
        ]
        logger.info(f"Loaded {len(items)} catalog items from {self.path}")
        return items

    def put(self, item: CatalogItem) -> None:
        super().put(item)
        self._on_write()

    def _on_write(self) -> None:
        self.save()

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with self._save_lock:
            payload = {"items": [item.to_dict() for item in self.list_all()]}
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            tmp_path.replace(self.path)
        logger.debug(f"Saved catalog to {self.path}")
