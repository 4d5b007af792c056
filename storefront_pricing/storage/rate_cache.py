"""
Exchange-rate cache.

Holds the latest rate snapshot per base currency plus a short history.

Rate resolution order for get_rate(base, target):
- base == target: identity rate 1
- target has an allowed manual rate (canonical base only): manual rate
- newest snapshot for base that contains target: snapshot rate (stale
  when it is not the current snapshot)
- otherwise: RateUnavailable

Readers never wait on a refresh: a snapshot is only published once it is
complete, by replacing the dict entry for its base. Concurrent refreshes of
the same base share a single provider call.
"""

import logging
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional

from storefront_pricing.exceptions import ProviderFetchFailed, RateUnavailable
from storefront_pricing.models import ExchangeRateSnapshot, RateQuote
from storefront_pricing.pricing.fx_provider import SUPPORTED_CURRENCIES, RateProvider
from storefront_pricing.utils.config_loader import AppConfig

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RefreshResult:
    """
    Outcome of a refresh call.

    Attributes:
        base_currency: Base that was refreshed.
        snapshot: Snapshot now being served (new, or the previous one on failure).
        refreshed: True if a new snapshot was published.
        error: Failure message when refreshed is False.
    """

    base_currency: str
    snapshot: Optional[ExchangeRateSnapshot]
    refreshed: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base": self.base_currency,
            "refreshed": self.refreshed,
            "error": self.error,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
        }


@dataclass
class _RefreshState:
    attempts: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None


class ExchangeRateCache:
    """
    Cache of exchange-rate snapshots with manual-override precedence.

    Attributes:
        provider: Rate provider used by refresh().
        currency_store: Optional store supplying active codes and manual rates.
        canonical_currency: Base that manual rates are quoted against.
        history_size: Snapshots kept per base, newest included.
        stale_after_seconds: Age after which a snapshot is reported stale.
    """

    def __init__(
        self,
        provider: RateProvider,
        currency_store: Any = None,
        canonical_currency: str = "USD",
        history_size: int = 7,
        stale_after_seconds: float = 2 * 86400,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.provider = provider
        self.currency_store = currency_store
        self.canonical_currency = canonical_currency.upper()
        self.history_size = max(1, int(history_size))
        self.stale_after_seconds = stale_after_seconds
        self._clock = clock

        self._current: Dict[str, ExchangeRateSnapshot] = {}
        self._history: Dict[str, Deque[ExchangeRateSnapshot]] = {}
        self._state: Dict[str, _RefreshState] = {}

        # Guards only the in-flight registry, never a provider call
        self._registry_lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        provider: RateProvider,
        currency_store: Any = None,
    ) -> "ExchangeRateCache":
        return cls(
            provider=provider,
            currency_store=currency_store,
            canonical_currency=config.pricing.canonical_currency,
            history_size=config.fx.history_size,
            stale_after_seconds=config.fx.stale_after_seconds,
        )

    # Reads

    def get_snapshot(self, base_currency: str) -> Optional[ExchangeRateSnapshot]:
        return self._current.get(base_currency.upper())

    def history(self, base_currency: str) -> List[ExchangeRateSnapshot]:
        """Snapshots for a base, newest first."""
        history = self._history.get(base_currency.upper())
        return list(reversed(history)) if history else []

    def is_stale(self, base_currency: str) -> bool:
        """
        Check whether the snapshot served for a base is stale.

        A snapshot is stale when it is older than stale_after_seconds or a
        refresh failed after it was fetched. No snapshot counts as stale.
        """
        base = base_currency.upper()
        snapshot = self._current.get(base)
        if snapshot is None:
            return True
        age = (self._clock() - snapshot.fetched_at).total_seconds()
        if age > self.stale_after_seconds:
            return True
        state = self._state.get(base)
        return bool(
            state and state.last_failure_at and state.last_failure_at >= snapshot.fetched_at
        )

    def get_rate(self, base_currency: str, target_currency: str) -> RateQuote:
        """
        Resolve the rate to convert one unit of base into target.

        Args:
            base_currency: Currency being converted from.
            target_currency: Currency being converted to.

        Returns:
            RateQuote: Rate, as-of time, source and staleness flag.

        Raises:
            RateUnavailable: If no manual rate or snapshot rate exists.
        """
        base = base_currency.strip().upper()
        target = target_currency.strip().upper()

        if base == target:
            return RateQuote(Decimal("1"), self._clock(), "identity")

        if base == self.canonical_currency and self.currency_store is not None:
            currency = self.currency_store.find(target)
            manual_rate = currency.effective_manual_rate if currency else None
            if manual_rate is not None:
                return RateQuote(manual_rate, self._clock(), "manual")

        # Newest snapshot for the base that carries the target; a partial
        # fetch must not hide a rate an older snapshot still holds.
        current = self._current.get(base)
        for snapshot in reversed(tuple(self._history.get(base, ()))):
            rate = snapshot.get_rate(target)
            if rate is None:
                continue
            is_stale = snapshot is not current or self.is_stale(base)
            return RateQuote(rate, snapshot.fetched_at, snapshot.provider, is_stale)

        logger.warning(f"No rate available for {base}->{target}")
        raise RateUnavailable(base, target)

    # Writes

    def seed(self, snapshot: ExchangeRateSnapshot) -> None:
        """Publish a snapshot directly, e.g. one restored from storage."""
        self._publish(snapshot)

    def _publish(self, snapshot: ExchangeRateSnapshot) -> None:
        base = snapshot.base_currency
        history = self._history.setdefault(base, deque(maxlen=self.history_size))
        history.append(snapshot)
        self._current[base] = snapshot

    def _symbols_for(self, base: str) -> List[str]:
        codes: List[str] = []
        if self.currency_store is not None:
            codes = self.currency_store.active_codes()
        if not codes:
            codes = list(SUPPORTED_CURRENCIES)
        if base != self.canonical_currency:
            codes.append(self.canonical_currency)
        return sorted({c for c in codes if c != base})

    def refresh(self, base_currency: str) -> RefreshResult:
        """
        Fetch a new snapshot for a base currency.

        If a refresh for the same base is already running, wait for it and
        return its result instead of calling the provider again. A provider
        failure keeps the previous snapshot in service and is recorded.

        Args:
            base_currency: Base currency to refresh.

        Returns:
            RefreshResult: Snapshot now served and whether it is new.
        """
        base = base_currency.strip().upper()

        with self._registry_lock:
            future = self._inflight.get(base)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[base] = future

        if not leader:
            logger.debug(f"Joining in-flight refresh for {base}")
            return future.result()

        try:
            result = self._fetch_and_publish(base)
        except Exception as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
        finally:
            with self._registry_lock:
                self._inflight.pop(base, None)
        return result

    def _fetch_and_publish(self, base: str) -> RefreshResult:
        state = self._state.setdefault(base, _RefreshState())
        state.attempts += 1
        symbols = self._symbols_for(base)

        try:
            fetched = self.provider.fetch(base, symbols)
        except ProviderFetchFailed as e:
            now = self._clock()
            state.failures += 1
            state.consecutive_failures += 1
            state.last_failure_at = now
            state.last_error = e.message
            previous = self._current.get(base)
            logger.error(
                f"Rate refresh failed for {base}, keeping previous snapshot: {e.message}",
                extra={
                    "extra_fields": {
                        "base": base,
                        "provider": e.provider,
                        "consecutive_failures": state.consecutive_failures,
                        "previous_as_of": previous.as_of_date if previous else None,
                    }
                },
            )
            return RefreshResult(base, previous, refreshed=False, error=e.message)

        snapshot = ExchangeRateSnapshot(
            base_currency=base,
            as_of_date=fetched.as_of_date,
            rates=fetched.rates,
            fetched_at=self._clock(),
            provider=getattr(self.provider, "name", "unknown"),
            missing_currencies=tuple(fetched.missing),
        )
        self._publish(snapshot)
        state.consecutive_failures = 0

        logger.info(
            f"Published {base} snapshot as of {snapshot.as_of_date} "
            f"({len(snapshot.rates)} rates, status={snapshot.fetch_status})"
        )
        return RefreshResult(base, snapshot, refreshed=True)

    # Diagnostics

    def get_stats(self) -> Dict[str, Any]:
        """
        Staleness diagnostics per base currency.

        Returns:
            Dict mapping base -> age, status and failure counters.
        """
        now = self._clock()
        stats: Dict[str, Any] = {}
        for base in sorted(set(self._current) | set(self._state)):
            snapshot = self._current.get(base)
            state = self._state.get(base, _RefreshState())
            stats[base] = {
                "as_of_date": snapshot.as_of_date if snapshot else None,
                "fetched_at": snapshot.fetched_at.isoformat() if snapshot else None,
                "age_seconds": (
                    round((now - snapshot.fetched_at).total_seconds(), 1) if snapshot else None
                ),
                "provider": snapshot.provider if snapshot else None,
                "fetch_status": snapshot.fetch_status if snapshot else None,
                "rate_count": len(snapshot.rates) if snapshot else 0,
                "is_stale": self.is_stale(base),
                "history_size": len(self._history.get(base, ())),
                "attempts": state.attempts,
                "failures": state.failures,
                "consecutive_failures": state.consecutive_failures,
                "last_failure_at": (
                    state.last_failure_at.isoformat() if state.last_failure_at else None
                ),
                "last_error": state.last_error,
            }
        return stats
