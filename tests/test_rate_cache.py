"""
Tests for the exchange-rate cache.
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront_pricing.exceptions import RateUnavailable
from storefront_pricing.models import CurrencyConfig, ExchangeRateSnapshot
from storefront_pricing.storage.currency_store import InMemoryCurrencyStore
from storefront_pricing.storage.rate_cache import ExchangeRateCache
from tests.fixtures.catalog_factory import make_currencies
from tests.fixtures.fx_mocks import BlockingRateProvider, FakeRateProvider


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def currency_store() -> InMemoryCurrencyStore:
    return InMemoryCurrencyStore(make_currencies())


@pytest.fixture
def provider() -> FakeRateProvider:
    return FakeRateProvider()


@pytest.fixture
def cache(provider, currency_store, clock) -> ExchangeRateCache:
    return ExchangeRateCache(
        provider, currency_store, stale_after_seconds=3600, history_size=3, clock=clock
    )


class TestGetRate:
    """Tests for rate resolution precedence."""

    def test_identity(self, cache: ExchangeRateCache, clock: FakeClock) -> None:
        quote = cache.get_rate("usd", "USD")
        assert quote.rate == Decimal("1")
        assert quote.source == "identity"
        assert quote.as_of == clock.now

    def test_snapshot_rate(self, cache: ExchangeRateCache, clock: FakeClock) -> None:
        cache.refresh("USD")
        quote = cache.get_rate("USD", "EGP")
        assert quote.rate == Decimal("48.5")
        assert quote.as_of == clock.now
        assert quote.source == "fake"
        assert quote.is_stale is False

    def test_manual_rate_takes_precedence(self, cache, currency_store, clock) -> None:
        cache.refresh("USD")
        currency_store.set_manual_rate("EGP", 50)
        quote = cache.get_rate("USD", "EGP")
        assert quote.rate == Decimal("50")
        assert quote.source == "manual"

    def test_manual_rate_ignored_when_not_allowed(self, cache, currency_store) -> None:
        cache.refresh("USD")
        currency_store.set_manual_rate("EGP", 50, allow=False)
        assert cache.get_rate("USD", "EGP").rate == Decimal("48.5")

    def test_manual_rate_without_snapshot(self, cache, currency_store) -> None:
        currency_store.set_manual_rate("EUR", "0.9")
        assert cache.get_rate("USD", "EUR").rate == Decimal("0.9")

    def test_unavailable_without_snapshot(self, cache: ExchangeRateCache) -> None:
        with pytest.raises(RateUnavailable) as exc_info:
            cache.get_rate("USD", "EGP")
        assert exc_info.value.status_code == 503

    def test_unavailable_for_missing_currency(self, cache: ExchangeRateCache) -> None:
        cache.refresh("USD")
        with pytest.raises(RateUnavailable):
            cache.get_rate("USD", "CHF")


class TestRefresh:
    """Tests for refresh, failure handling and history."""

    def test_requests_active_codes(self, cache, provider) -> None:
        cache.refresh("USD")
        base, symbols = provider.calls[0]
        assert base == "USD"
        assert symbols == ("EGP", "EUR", "JPY")

    def test_missing_currencies_reported(self, provider, clock) -> None:
        store = InMemoryCurrencyStore(
            make_currencies() + [CurrencyConfig(code="SAR", is_active=True)]
        )
        cache = ExchangeRateCache(provider, store, clock=clock)
        result = cache.refresh("USD")
        assert result.snapshot.missing_currencies == ("SAR",)
        assert result.snapshot.fetch_status == "partial"

    def test_failure_keeps_previous_snapshot_marked_stale(self, cache, provider, clock) -> None:
        first = cache.refresh("USD")
        clock.advance(60)
        provider.fail = True

        result = cache.refresh("USD")

        assert result.refreshed is False
        assert result.error == "provider down"
        assert result.snapshot is first.snapshot
        quote = cache.get_rate("USD", "EGP")
        assert quote.rate == Decimal("48.5")
        assert quote.as_of == first.snapshot.fetched_at
        assert quote.is_stale is True

    def test_failure_without_snapshot(self, cache, provider) -> None:
        provider.fail = True
        result = cache.refresh("USD")
        assert result.snapshot is None
        with pytest.raises(RateUnavailable):
            cache.get_rate("USD", "EUR")

    def test_success_after_failure_clears_staleness(self, cache, provider, clock) -> None:
        cache.refresh("USD")
        provider.fail = True
        cache.refresh("USD")
        clock.advance(1)
        provider.fail = False
        cache.refresh("USD")
        assert cache.is_stale("USD") is False

    def test_partial_refresh_falls_back_to_older_snapshot(self, cache, provider, clock) -> None:
        first = cache.refresh("USD")
        clock.advance(60)
        del provider.rates["EGP"]

        second = cache.refresh("USD")

        assert second.snapshot.fetch_status == "partial"
        assert len(cache.history("USD")) == 2
        egp = cache.get_rate("USD", "EGP")
        assert egp.rate == Decimal("48.5")
        assert egp.as_of == first.snapshot.fetched_at
        assert egp.is_stale is True
        eur = cache.get_rate("USD", "EUR")
        assert eur.as_of == second.snapshot.fetched_at
        assert eur.is_stale is False

    def test_rate_dropped_from_whole_history(self, provider, currency_store, clock) -> None:
        cache = ExchangeRateCache(provider, currency_store, history_size=1, clock=clock)
        cache.refresh("USD")
        del provider.rates["EGP"]
        cache.refresh("USD")
        with pytest.raises(RateUnavailable):
            cache.get_rate("USD", "EGP")

    def test_stale_by_age(self, cache, clock) -> None:
        cache.refresh("USD")
        clock.advance(3601)
        assert cache.get_rate("USD", "EUR").is_stale is True

    def test_snapshot_is_read_only(self, cache) -> None:
        snapshot = cache.refresh("USD").snapshot
        with pytest.raises(TypeError):
            snapshot.rates["EUR"] = Decimal("1")

    def test_history_is_bounded(self, cache, clock) -> None:
        for _ in range(5):
            cache.refresh("USD")
            clock.advance(10)
        history = cache.history("USD")
        assert len(history) == 3
        assert history[0] is cache.get_snapshot("USD")

    def test_seed(self, cache, clock) -> None:
        cache.seed(
            ExchangeRateSnapshot(
                base_currency="USD",
                as_of_date="2026-10-15",
                rates={"EGP": Decimal("48.5")},
                fetched_at=clock.now,
                provider="seed",
            )
        )
        assert cache.get_rate("USD", "EGP").source == "seed"

    def test_stats(self, cache, provider, clock) -> None:
        cache.refresh("USD")
        provider.fail = True
        cache.refresh("USD")
        stats = cache.get_stats()["USD"]
        assert stats["attempts"] == 2
        assert stats["failures"] == 1
        assert stats["consecutive_failures"] == 1
        assert stats["last_error"] == "provider down"
        assert stats["is_stale"] is True
        assert stats["rate_count"] == 3


class TestSingleFlight:
    """Tests for concurrent refresh coalescing."""

    def test_concurrent_refreshes_share_one_fetch(self, currency_store, clock) -> None:
        provider = BlockingRateProvider()
        cache = ExchangeRateCache(provider, currency_store, clock=clock)
        results = []

        def refresh():
            results.append(cache.refresh("USD"))

        leader = threading.Thread(target=refresh)
        leader.start()
        assert provider.entered.wait(2)

        followers = [threading.Thread(target=refresh) for _ in range(3)]
        for t in followers:
            t.start()
        # Give followers time to join the in-flight refresh
        time.sleep(0.2)
        provider.release.set()
        for t in [leader] + followers:
            t.join(5)

        assert provider.call_count == 1
        assert len(results) == 4
        assert all(r.snapshot is results[0].snapshot for r in results)

    def test_reads_do_not_block_during_refresh(self, currency_store, clock) -> None:
        provider = BlockingRateProvider()
        cache = ExchangeRateCache(provider, currency_store, clock=clock)
        provider.release.set()
        cache.refresh("USD")
        provider.release.clear()
        provider.entered.clear()

        worker = threading.Thread(target=cache.refresh, args=("USD",))
        worker.start()
        assert provider.entered.wait(2)

        assert cache.get_rate("USD", "EUR").rate == Decimal("0.92")

        provider.release.set()
        worker.join(5)

    def test_different_bases_refresh_independently(self, currency_store, clock) -> None:
        provider = FakeRateProvider({"USD": 1.09, "EUR": 1.0, "GBP": 0.86, "EGP": 52.8})
        cache = ExchangeRateCache(provider, currency_store, clock=clock)
        cache.refresh("USD")
        cache.refresh("EUR")
        assert provider.call_count == 2
        assert cache.get_rate("EUR", "USD").rate == Decimal("1.09")
