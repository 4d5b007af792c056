"""
Markup engine module.

Computes the dynamic markup of priced entities from a demand signal and
recomputes the whole active catalog on a schedule.

The demand function is a replaceable policy; the engine only guarantees
that its output is clamped to [0, 50] and that a missing signal counts as 0.
"""

import logging
import math
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Iterable, Protocol

from storefront_pricing.exceptions import (
    Conflict,
    EntityRecomputeFailed,
    InvalidInput,
    NotFound,
)
from storefront_pricing.models import (
    DYNAMIC_MARKUP_CAP_PCT,
    CatalogItem,
    PricedEntity,
    PriceFields,
    to_decimal,
)
from storefront_pricing.pricing.price_calculator import PriceCalculator
from storefront_pricing.utils.config_loader import AppConfig

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class DemandSignalSource(Protocol):
    """External source of demand signals (views/purchase velocity)."""

    def signal(self, entity_id: str) -> float | None:
        """Return the numeric signal, or None when unknown."""
        ...


class DemandPolicy(Protocol):
    """Maps a demand signal to a markup percentage (unclamped)."""

    def __call__(self, signal: float) -> float:
        ...


class TieredDemandPolicy:
    """
    Step function from demand signal to markup percentage.

    Tiers are (minimum signal, markup %) pairs; the highest tier whose
    minimum is reached wins. Signals below every tier map to 0.
    """

    def __init__(self, tiers: Iterable[tuple[float, float]]) -> None:
        self.tiers = sorted(((float(m), float(p)) for m, p in tiers), reverse=True)

    def __call__(self, signal: float) -> float:
        for minimum, pct in self.tiers:
            if signal >= minimum:
                return pct
        return 0.0


class LinearDemandPolicy:
    """Markup percentage proportional to the demand signal."""

    def __init__(self, scale: float = 0.1) -> None:
        self.scale = float(scale)

    def __call__(self, signal: float) -> float:
        return signal * self.scale


def build_policy(config: AppConfig) -> DemandPolicy:
    """Create the demand policy selected in configuration."""
    if config.markup.policy == "linear":
        return LinearDemandPolicy(config.markup.linear_scale)
    return TieredDemandPolicy(config.markup.tiers)


def clamp_markup(value: Any) -> Decimal:
    """Clamp a markup value to [0, 50], treating non-numeric values as 0."""
    try:
        pct = to_decimal(value)
    except ValueError:
        return ZERO
    if pct is None or not pct.is_finite():
        return ZERO
    return max(ZERO, min(DYNAMIC_MARKUP_CAP_PCT, pct))


@dataclass
class BatchResult:
    """
    Result of a markup recompute batch.

    Attributes:
        total: Catalog items considered.
        updated: Items whose price fields were written.
        unchanged: Items whose price fields already matched.
        skipped: Item id, or "item/variant" id, -> reason for entities left
            at their last known prices.
        stopped: True if the batch stopped early on request.
        duration_ms: Wall time of the batch.
    """

    total: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: dict[str, str] = field(default_factory=dict)
    stopped: bool = False
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": dict(self.skipped),
            "stopped": self.stopped,
            "duration_ms": round(self.duration_ms, 2),
        }


class MarkupEngine:
    """
    Engine for dynamic markup recomputation.

    Attributes:
        signal_source: Demand signal collaborator.
        policy: Demand policy mapping signal to markup %.
        max_workers: Items in flight at once during batch runs.
        entity_timeout_seconds: Ceiling per catalog item in a batch.
        max_price_jump_ratio: Largest allowed change of a stored final price.
    """

    def __init__(
        self,
        signal_source: DemandSignalSource,
        policy: DemandPolicy | None = None,
        max_workers: int = 8,
        entity_timeout_seconds: float = 30.0,
        max_price_jump_ratio: float = 10.0,
    ) -> None:
        self.signal_source = signal_source
        self.policy = policy or TieredDemandPolicy([])
        self.max_workers = max(1, int(max_workers))
        self.entity_timeout_seconds = entity_timeout_seconds
        self.max_price_jump_ratio = max_price_jump_ratio

    @classmethod
    def from_config(cls, config: AppConfig, signal_source: DemandSignalSource) -> "MarkupEngine":
        return cls(
            signal_source=signal_source,
            policy=build_policy(config),
            max_workers=config.markup.max_workers,
            entity_timeout_seconds=config.markup.entity_timeout_seconds,
            max_price_jump_ratio=config.pricing.max_price_jump_ratio,
        )

    def read_signal(self, signal_key: str) -> float:
        """
        Read a demand signal, treating unknown or non-finite values as 0.

        Raises:
            EntityRecomputeFailed: If the signal source fails.
        """
        try:
            raw = self.signal_source.signal(signal_key)
        except Exception as e:
            raise EntityRecomputeFailed(signal_key, f"signal source error: {e}") from e

        if raw is None:
            return 0.0
        try:
            value = float(raw)
        except (TypeError, ValueError):
            logger.debug(f"Non-numeric demand signal for {signal_key}: {raw!r}")
            return 0.0
        return value if math.isfinite(value) else 0.0

    def compute_dynamic_markup(self, signal: float) -> Decimal:
        """Apply the policy to a signal and clamp the result to [0, 50]."""
        try:
            raw_pct = self.policy(signal)
        except Exception as e:
            raise EntityRecomputeFailed("<policy>", f"demand policy error: {e}") from e
        return clamp_markup(raw_pct)

    def recompute_markup(self, entity: PricedEntity, signal: float | None = None) -> Decimal:
        """
        Recompute an entity's dynamic markup in place.

        Only `dynamic_markup_pct` is touched; deriving the final price is
        left to the price calculator.

        Args:
            entity: Entity to update.
            signal: Pre-read signal; read from the signal source when None.

        Returns:
            Decimal: The entity's effective markup percentage.

        Raises:
            EntityRecomputeFailed: If the signal cannot be read.
        """
        if signal is None:
            signal = self.read_signal(entity.signal_key)
        try:
            dynamic = self.compute_dynamic_markup(signal)
        except EntityRecomputeFailed as e:
            raise EntityRecomputeFailed(entity.id, e.reason) from e
        entity.dynamic_markup_pct = dynamic
        return entity.effective_markup_pct

    def reprice_item(
        self,
        item: CatalogItem,
        calculator: PriceCalculator,
    ) -> tuple[PriceFields | None, dict[str, PriceFields], dict[str, InvalidInput]]:
        """
        Recompute markups and final prices for a root item and its variants.

        Works on a copy; the caller decides whether to persist. The root and
        each variant are validated on their own, so one entity failing the
        calculator or the write guard leaves the others repriced.

        Returns:
            Tuple of (root price fields or None if the root failed,
            variant id -> price fields, entity id -> validation error).

        Raises:
            EntityRecomputeFailed: If the signal cannot be read.
        """
        working = item.clone()
        signal = self.read_signal(working.signal_key)

        results: dict[str, PriceFields] = {}
        failures: dict[str, InvalidInput] = {}
        for entity in working.iter_entities():
            previous = entity.final_price
            try:
                self.recompute_markup(entity, signal=signal)
                entity.final_price = calculator.derive_entity(entity)
                calculator.guard_write(
                    previous,
                    entity.final_price,
                    self.max_price_jump_ratio,
                    entity_id=entity.id,
                )
            except InvalidInput as e:
                failures[entity.id] = e
                continue
            results[entity.id] = entity.price_fields()

        root_fields = results.pop(working.id, None)
        return root_fields, results, failures

    def _process_item(
        self,
        item: CatalogItem,
        catalog: Any,
        calculator: PriceCalculator,
        abandoned: threading.Event,
    ) -> tuple[bool, dict[str, str]]:
        """
        Reprice and persist one item.

        Returns:
            Tuple of (whether a write happened, skip key -> reason). A failed
            root is keyed by the item id, a failed variant by "item/variant".
        """
        root_fields, variant_fields, failures = self.reprice_item(item, calculator)

        skipped: dict[str, str] = {}
        for entity_id, error in failures.items():
            key = item.id if entity_id == item.id else f"{item.id}/{entity_id}"
            skipped[key] = error.error_code
            logger.warning(f"Skipping {key}, keeping last known markup: {error.message}")

        if root_fields == item.price_fields():
            root_fields = None
        changed_variants = {
            vid: fields
            for vid, fields in variant_fields.items()
            if item.find_variant(vid) is None or fields != item.find_variant(vid).price_fields()
        }
        if (root_fields is None and not changed_variants) or abandoned.is_set():
            return False, skipped

        catalog.update(item.id, root_fields, changed_variants, expected_version=item.version)
        return True, skipped

    def _start_item(
        self,
        item: CatalogItem,
        catalog: Any,
        calculator: PriceCalculator,
        abandoned: threading.Event,
    ) -> Future:
        """Run one item on its own daemon worker thread."""
        future: Future = Future()
        future.set_running_or_notify_cancel()

        def work() -> None:
            try:
                future.set_result(self._process_item(item, catalog, calculator, abandoned))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=work, name=f"markup-{item.id}", daemon=True).start()
        return future

    def run_batch(
        self,
        catalog: Any,
        calculator: PriceCalculator,
        stop_event: threading.Event | None = None,
    ) -> BatchResult:
        """
        Recompute every active catalog item.

        At most max_workers items are in flight. A failing item is logged
        and skipped; it keeps its last stored prices. An item that exceeds
        the per-item ceiling is reported as skipped and abandoned: its
        worker may still be blocked, but it no longer takes up a slot, so
        the remaining items keep their full time budget. Once the stop
        event is set no further items are scheduled.

        Args:
            catalog: Catalog store with list_active()/update().
            calculator: Price calculator for derivation.
            stop_event: Optional event that stops scheduling new items.

        Returns:
            BatchResult: Batch statistics.
        """
        start_time = time.time()
        result = BatchResult()
        items = list(catalog.list_active())
        result.total = len(items)
        logger.info(f"Starting markup recompute for {result.total} items")

        pending: dict[Future, CatalogItem] = {}
        deadlines: dict[Future, float] = {}
        abandoned: dict[str, threading.Event] = {}
        queue = list(items)

        while queue or pending:
            while queue and len(pending) < self.max_workers:
                if stop_event is not None and stop_event.is_set():
                    result.stopped = True
                    for item in queue:
                        result.skipped[item.id] = "stopped"
                    queue.clear()
                    break
                item = queue.pop(0)
                abandoned[item.id] = threading.Event()
                future = self._start_item(item, catalog, calculator, abandoned[item.id])
                pending[future] = item
                # Workers start immediately, so the deadline runs from the item's own start
                deadlines[future] = time.monotonic() + self.entity_timeout_seconds

            if not pending:
                break

            timeout = max(0.0, min(deadlines.values()) - time.monotonic())
            done, _ = wait(list(pending), timeout=timeout, return_when=FIRST_COMPLETED)

            for future in done:
                item = pending.pop(future)
                deadlines.pop(future)
                self._collect(future, item, result)

            now = time.monotonic()
            for future in [f for f in pending if deadlines[f] <= now]:
                item = pending.pop(future)
                deadlines.pop(future)
                abandoned[item.id].set()
                result.skipped[item.id] = "timeout"
                logger.warning(
                    f"Skipping {item.id}: recompute exceeded {self.entity_timeout_seconds}s"
                )

        result.duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Markup recompute completed: total={result.total}, updated={result.updated}, "
            f"unchanged={result.unchanged}, skipped={len(result.skipped)}, "
            f"duration_ms={result.duration_ms:.0f}"
        )
        return result

    def _collect(self, future: Future, item: CatalogItem, result: BatchResult) -> None:
        try:
            written, skipped = future.result()
        except (EntityRecomputeFailed, InvalidInput, Conflict, NotFound) as e:
            result.skipped[item.id] = e.error_code
            logger.warning(f"Skipping {item.id}, keeping last known markup: {e.message}")
            return
        except Exception as e:
            result.skipped[item.id] = "ERROR"
            logger.exception(f"Unexpected error recomputing {item.id}: {e}")
            return

        result.skipped.update(skipped)
        if written:
            result.updated += 1
        elif not skipped:
            result.unchanged += 1


def recompute_markups(
    entities: Iterable[PricedEntity],
    signal_source: DemandSignalSource,
    policy: Callable[[float], float],
) -> dict[str, Decimal]:
    """
    Convenience function to recompute dynamic markups for loose entities.

    Entities whose signal cannot be read are left untouched and omitted.

    Returns:
        Dict mapping entity id -> effective markup %.
    """
    engine = MarkupEngine(signal_source, policy=policy)
    effective = {}
    for entity in entities:
        try:
            effective[entity.id] = engine.recompute_markup(entity)
        except EntityRecomputeFailed as e:
            logger.warning(f"Skipping {entity.id}: {e.message}")
    return effective
