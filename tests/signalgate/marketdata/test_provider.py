"""Tests for the market data provider and its fallbacks."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from signalgate.marketdata.provider import (
    DEFAULT_IV_RANK,
    MarketDataError,
    StaticMarketData,
    iv_rank_or_default,
    resolve_provider,
    vix_or_none,
)
from signalgate.options.types import OptionsChain


class TestStaticMarketData:
    def test_prices(self) -> None:
        provider = StaticMarketData(prices={"SPX": 4500.0})
        assert provider.get_current_price("SPX") == 4500.0
        provider.set_price("SPX", 4510.0)
        assert provider.get_current_price("SPX") == 4510.0

    def test_missing_price_not_retryable(self) -> None:
        with pytest.raises(MarketDataError, match="No price for NDX") as excinfo:
            StaticMarketData().get_current_price("NDX")
        assert excinfo.value.symbol == "NDX"
        assert excinfo.value.retryable is False

    def test_chain_lookup_by_symbol(self) -> None:
        chain = OptionsChain("SPX", datetime(2024, 7, 12, tzinfo=timezone.utc), ())
        provider = StaticMarketData()
        provider.set_chain(chain)
        assert provider.get_options_chain("SPX", datetime(2024, 8, 1, tzinfo=timezone.utc)) is chain
        with pytest.raises(MarketDataError, match="No options chain"):
            provider.get_options_chain("NDX")

    def test_vix_unavailable_is_retryable(self) -> None:
        provider = StaticMarketData()
        with pytest.raises(MarketDataError) as excinfo:
            provider.get_vix()
        assert excinfo.value.retryable
        provider.set_vix(18.5)
        assert provider.get_vix() == 18.5


class TestFallbacks:
    def test_iv_rank_default(self) -> None:
        assert iv_rank_or_default(StaticMarketData(), "SPX") == DEFAULT_IV_RANK
        assert iv_rank_or_default(StaticMarketData(iv_ranks={"SPX": 72.0}), "SPX") == 72.0

    def test_iv_rank_custom_default(self) -> None:
        provider = MagicMock()
        provider.get_iv_rank.side_effect = TimeoutError("slow")
        assert iv_rank_or_default(provider, "SPX", default=30.0) == 30.0

    def test_vix_or_none(self, caplog) -> None:
        assert vix_or_none(StaticMarketData(vix=22.0)) == 22.0
        assert vix_or_none(StaticMarketData()) is None
        assert "VIX unavailable" in caplog.text


class TestResolveProvider:
    def test_static(self) -> None:
        assert isinstance(resolve_provider("static"), StaticMarketData)

    def test_custom_registry(self) -> None:
        sentinel = MagicMock()
        assert resolve_provider("mock", {"mock": lambda: sentinel}) is sentinel

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown market data source 'polygon'"):
            resolve_provider("polygon")
