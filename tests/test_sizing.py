"""Tests for trade sizing policies."""

import random
from types import SimpleNamespace

import pytest

from tradeloop.services.sizing import (
    BUY,
    SELL,
    BalanceEqualizationPolicy,
    Balances,
    Prices,
    RandomizedAmountPolicy,
    build_policy,
    equalization_usd,
    from_base_units,
    to_base_units,
)
from tradeloop.utils.constants import NATIVE_TOKEN_ADDRESS

from tests.fakes import ETHER, TOKEN


def counters(buys=0, sells=0):
    return SimpleNamespace(buy_count=buys, sell_count=sells, trading_times=buys + sells)


# ---------------------------------------------------------------------------
# 1. Units
# ---------------------------------------------------------------------------

class TestUnits:
    def test_to_base_units_exact_for_decimal_inputs(self):
        assert to_base_units(0.1, 18) == ETHER // 10
        assert to_base_units(1.5, 6) == 1_500_000

    def test_to_base_units_truncates(self):
        assert to_base_units(0.0000001, 6) == 0

    def test_from_base_units(self):
        assert from_base_units(ETHER // 4, 18) == 0.25

    def test_balances_whole_units(self):
        balances = Balances(native=ETHER * 2, token=3_000_000, token_decimals=6)
        assert balances.native_units == 2.0
        assert balances.token_units == 3.0


# ---------------------------------------------------------------------------
# 2. Balance equalization
# ---------------------------------------------------------------------------

class TestEqualization:
    def test_native_heavy_buys(self):
        side, usd = equalization_usd(native_usd=100.0, token_usd=20.0, overshoot_pct=10)
        # target 60: 100 - 60 + 10% of 100
        assert side == BUY
        assert usd == pytest.approx(50.0)

    def test_token_heavy_sells(self):
        side, usd = equalization_usd(native_usd=20.0, token_usd=100.0, overshoot_pct=10)
        assert side == SELL
        assert usd == pytest.approx(50.0)

    def test_equal_balances_sell_the_overshoot(self):
        side, usd = equalization_usd(native_usd=50.0, token_usd=50.0, overshoot_pct=10)
        assert side == SELL
        assert usd == pytest.approx(5.0)

    def test_decision_converts_to_base_units(self):
        policy = BalanceEqualizationPolicy(TOKEN, trades_per_account=4)
        # 5 native at $20 = $100, 10 tokens at $2 = $20
        balances = Balances(native=5 * ETHER, token=10 * ETHER)
        decision = policy.decide(counters(), balances, Prices(native=20.0, token=2.0))
        assert decision.should_trade
        assert decision.side == BUY
        assert (decision.src, decision.dst) == (NATIVE_TOKEN_ADDRESS, TOKEN)
        # $50 / $20 = 2.5 native
        assert decision.amount == pytest.approx(25 * ETHER // 10, rel=1e-12)

    def test_sell_amount_clamped_to_balance(self):
        policy = BalanceEqualizationPolicy(TOKEN, trades_per_account=4, overshoot_pct=100)
        balances = Balances(native=0, token=10 * ETHER)
        decision = policy.decide(counters(), balances, Prices(native=20.0, token=2.0))
        assert decision.side == SELL
        assert decision.amount == 10 * ETHER

    def test_empty_account_skips(self):
        policy = BalanceEqualizationPolicy(TOKEN, trades_per_account=4)
        decision = policy.decide(counters(), Balances(native=0, token=0), Prices(native=20.0, token=2.0))
        assert not decision.should_trade
        assert decision.skip_reason == "nothing_to_trade"

    def test_complete_after_trades_per_account(self):
        policy = BalanceEqualizationPolicy(TOKEN, trades_per_account=3)
        assert not policy.is_complete(counters(buys=1, sells=1))
        assert policy.is_complete(counters(buys=2, sells=1))


# ---------------------------------------------------------------------------
# 3. Randomized amounts
# ---------------------------------------------------------------------------

class TestRandomizedAmountPolicy:
    def test_buys_then_sells(self):
        policy = RandomizedAmountPolicy(TOKEN, consecutive_buys=2, consecutive_sells=2, min_amount=0.1, max_amount=0.1)
        sides = [policy.next_side(counters(buys=b, sells=s)) for b, s in [(0, 0), (1, 0), (2, 0), (2, 1)]]
        assert sides == [BUY, BUY, SELL, SELL]
        assert policy.is_complete(counters(buys=2, sells=2))
        assert not policy.is_complete(counters(buys=2, sells=1))

    def test_amount_within_bounds(self):
        policy = RandomizedAmountPolicy(
            TOKEN, 1, 1, min_amount=0.01, max_amount=0.05, rng=random.Random(42)
        )
        balances = Balances(native=ETHER, token=0)
        for _ in range(20):
            decision = policy.decide(counters(), balances, Prices(native=20.0, token=2.0))
            assert to_base_units(0.01, 18) <= decision.amount <= to_base_units(0.05, 18)

    def test_sell_converts_native_value_at_spot_price(self):
        policy = RandomizedAmountPolicy(TOKEN, 1, 1, min_amount=0.1, max_amount=0.1)
        balances = Balances(native=0, token=5 * ETHER)
        decision = policy.decide(counters(buys=1), balances, Prices(native=20.0, token=2.0))
        assert decision.side == SELL
        assert (decision.src, decision.dst) == (TOKEN, NATIVE_TOKEN_ADDRESS)
        assert decision.amount == ETHER

    def test_buy_respects_native_reserve(self):
        policy = RandomizedAmountPolicy(TOKEN, 1, 1, min_amount=0.1, max_amount=0.1, native_reserve=0.95)
        decision = policy.decide(counters(), Balances(native=ETHER, token=0), Prices(native=20.0, token=2.0))
        assert not decision.should_trade
        assert decision.side == BUY
        assert decision.skip_reason == "insufficient_balance"

    def test_sell_without_tokens_is_insufficient(self):
        policy = RandomizedAmountPolicy(TOKEN, 1, 1, min_amount=0.1, max_amount=0.1)
        decision = policy.decide(counters(buys=1), Balances(native=ETHER, token=0), Prices(native=20.0, token=2.0))
        assert not decision.should_trade
        assert decision.skip_reason == "insufficient_balance"

    def test_min_above_max_rejected(self):
        with pytest.raises(ValueError):
            RandomizedAmountPolicy(TOKEN, 1, 1, min_amount=0.5, max_amount=0.1)


def test_build_policy_selects_by_name():
    settings = SimpleNamespace(
        sizing_policy="random", consecutive_buys=3, consecutive_sells=1,
        min_trade_amount=0.01, max_trade_amount=0.02, native_reserve=0.0,
        sub_account_trading_max=5, overshoot_pct=10.0,
    )
    assert isinstance(build_policy(settings, TOKEN), RandomizedAmountPolicy)
    settings.sizing_policy = "equalize"
    policy = build_policy(settings, TOKEN)
    assert isinstance(policy, BalanceEqualizationPolicy)
    assert policy.trades_per_account == 5
