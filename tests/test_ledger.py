import logging

import pytest

from conftest import T0
from crypto_trader.config.models import Config
from crypto_trader.errors import LedgerError
from crypto_trader.execution.models import Order, OrderSide
from crypto_trader.portfolio.ledger import PortfolioLedger


def _buy(qty: float) -> Order:
    return Order(side=OrderSide.BUY, symbol="BTCUSDT", quantity=qty)


def _sell(qty: float) -> Order:
    return Order(side=OrderSide.SELL, symbol="BTCUSDT", quantity=qty)


@pytest.fixture
def ledger(balances):
    return PortfolioLedger("BTCUSDT", "BTC", "USDT", balances)


class TestApplyFill:
    def test_opening_fill(self, ledger):
        record = ledger.apply_fill(_buy(10.0), 100.0, 10.0, T0)
        assert ledger.balance("USDT") == pytest.approx(9_000.0)
        assert ledger.balance("BTC") == pytest.approx(10.0)
        assert ledger.position.entry_price == 100.0
        assert ledger.position.quantity == 10.0
        assert record.realized_pnl is None

    def test_closing_fill_realizes_pnl(self, ledger):
        ledger.apply_fill(_buy(10.0), 100.0, 10.0, T0)
        record = ledger.apply_fill(_sell(10.0), 110.0, 10.0, T0)
        assert record.realized_pnl == pytest.approx(100.0)
        assert ledger.realized_pnl == pytest.approx(100.0)
        assert ledger.position is None
        assert ledger.balance("USDT") == pytest.approx(10_100.0)
        assert ledger.balance("BTC") == pytest.approx(0.0)

    def test_partial_close_keeps_remainder(self, ledger):
        ledger.apply_fill(_buy(10.0), 100.0, 10.0, T0)
        ledger.apply_fill(_sell(4.0), 90.0, 4.0, T0)
        assert ledger.position.quantity == pytest.approx(6.0)
        assert ledger.realized_pnl == pytest.approx(-40.0)

    def test_second_position_is_rejected(self, ledger):
        ledger.apply_fill(_buy(1.0), 100.0, 1.0, T0)
        with pytest.raises(LedgerError):
            ledger.apply_fill(_buy(1.0), 100.0, 1.0, T0)
        assert ledger.position.quantity == 1.0

    def test_sell_without_position_is_rejected(self, ledger):
        with pytest.raises(LedgerError):
            ledger.apply_fill(_sell(1.0), 100.0, 1.0, T0)

    def test_overspend_is_rejected_without_change(self, ledger):
        with pytest.raises(LedgerError):
            ledger.apply_fill(_buy(200.0), 100.0, 200.0, T0)
        assert ledger.balance("USDT") == 10_000.0
        assert ledger.position is None

    def test_oversized_close_is_rejected(self, ledger):
        ledger.apply_fill(_buy(1.0), 100.0, 1.0, T0)
        with pytest.raises(LedgerError):
            ledger.apply_fill(_sell(2.0), 100.0, 2.0, T0)

    def test_negative_initial_balance(self):
        with pytest.raises(LedgerError):
            PortfolioLedger("BTCUSDT", "BTC", "USDT", {"USDT": -1.0})


class TestReconcile:
    def test_drift_is_reported_not_corrected(self, ledger, caplog):
        with caplog.at_level(logging.WARNING):
            drifts = ledger.reconcile({"USDT": 9_500.0, "BTC": 0.0})
        assert len(drifts) == 1
        assert drifts[0].asset == "USDT"
        assert drifts[0].delta == pytest.approx(-500.0)
        assert ledger.balance("USDT") == 10_000.0
        assert ledger.snapshot().drifts == tuple(drifts)
        assert "drift on USDT" in caplog.text

    def test_within_tolerance_is_clean(self, ledger):
        assert ledger.reconcile({"USDT": 10_000.0000001, "BTC": 0.0}) == []

    def test_unknown_exchange_asset_is_flagged(self, ledger):
        drifts = ledger.reconcile({"USDT": 10_000.0, "ETH": 1.0})
        assert [d.asset for d in drifts] == ["ETH"]


class TestSnapshot:
    def test_is_immutable(self, ledger):
        state = ledger.snapshot()
        with pytest.raises(TypeError):
            state.balances["USDT"] = 0.0
        ledger.apply_fill(_buy(1.0), 100.0, 1.0, T0)
        assert state.position is None
        assert state.trade_history == ()

    def test_statistics(self, ledger):
        ledger.apply_fill(_buy(1.0), 100.0, 1.0, T0)
        ledger.apply_fill(_sell(1.0), 130.0, 1.0, T0)
        ledger.apply_fill(_buy(1.0), 100.0, 1.0, T0)
        ledger.apply_fill(_sell(1.0), 80.0, 1.0, T0)
        state = ledger.snapshot()
        assert len(state.trade_history) == 4
        assert state.winning_trades == 1
        assert state.losing_trades == 1
        assert state.win_rate == pytest.approx(50.0)
        assert state.largest_win == pytest.approx(30.0)
        assert state.largest_loss == pytest.approx(-20.0)
        assert state.realized_pnl == pytest.approx(10.0)

    def test_valuation(self, ledger):
        ledger.apply_fill(_buy(10.0), 100.0, 10.0, T0)
        assert ledger.unrealized_pnl(105.0) == pytest.approx(50.0)
        assert ledger.total_value(105.0) == pytest.approx(10_050.0)

    def test_from_config(self):
        ledger = PortfolioLedger.from_config(Config(), {"USDT": 500.0})
        assert ledger.available_quote == 500.0
        assert ledger.balance("BTC") == 0.0
