"""Stateless trade sizing for the trading loop.

Two interchangeable policies decide the direction and size of the next swap.
All functions are pure computation: no I/O, balances and prices come in as
arguments.
"""

import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from tradeloop.utils.constants import NATIVE_DECIMALS, NATIVE_TOKEN_ADDRESS

BUY = "buy"
SELL = "sell"


# ---------------------------------------------------------------------------
# Inputs and result types
# ---------------------------------------------------------------------------

@dataclass
class Balances:
    """Raw on-chain balances (base units) of the acting account."""
    native: int
    token: int
    token_decimals: int = 18

    @property
    def native_units(self) -> float:
        return from_base_units(self.native, NATIVE_DECIMALS)

    @property
    def token_units(self) -> float:
        return from_base_units(self.token, self.token_decimals)


@dataclass
class Prices:
    """USD price per whole unit."""
    native: float
    token: float


@dataclass
class TradeDecision:
    should_trade: bool
    side: str | None = None  # "buy" = native -> token, "sell" = token -> native
    src: str | None = None
    dst: str | None = None
    amount: int = 0  # base units of src
    skip_reason: str | None = None  # "insufficient_balance", "nothing_to_trade"


class SessionCounters(Protocol):
    buy_count: int
    sell_count: int

    @property
    def trading_times(self) -> int: ...


class SizingPolicy(Protocol):
    name: str

    def is_complete(self, session: SessionCounters) -> bool: ...

    def decide(self, session: SessionCounters, balances: Balances, prices: Prices) -> TradeDecision: ...


# ---------------------------------------------------------------------------
# Unit helpers
# ---------------------------------------------------------------------------

def to_base_units(amount: float, decimals: int) -> int:
    """Whole units -> integer base units, truncating."""
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


def from_base_units(amount: int, decimals: int) -> float:
    return float(Decimal(amount) / (Decimal(10) ** decimals))


def percent(value: float, pct: float) -> float:
    return value / 100 * pct


def _decision(side: str, token_address: str, amount: int) -> TradeDecision:
    if side == BUY:
        return TradeDecision(should_trade=True, side=BUY, src=NATIVE_TOKEN_ADDRESS, dst=token_address, amount=amount)
    return TradeDecision(should_trade=True, side=SELL, src=token_address, dst=NATIVE_TOKEN_ADDRESS, amount=amount)


# ---------------------------------------------------------------------------
# Balance-equalization policy
# ---------------------------------------------------------------------------

def equalization_usd(native_usd: float, token_usd: float, overshoot_pct: float) -> tuple[str, float]:
    """Side and USD size that brings both balances to their mean, plus overshoot.

    The larger side sells ``larger - target`` where ``target`` is the mean of
    the two USD balances, plus ``overshoot_pct`` percent of its own balance, so
    the next swap flips direction.
    """
    target = (native_usd + token_usd) / 2
    if native_usd > token_usd:
        return BUY, native_usd - target + percent(native_usd, overshoot_pct)
    return SELL, token_usd - target + percent(token_usd, overshoot_pct)


class BalanceEqualizationPolicy:
    name = "equalize"

    def __init__(self, token_address: str, trades_per_account: int, overshoot_pct: float = 10.0):
        self.token_address = token_address
        self.trades_per_account = trades_per_account
        self.overshoot_pct = overshoot_pct

    def is_complete(self, session: SessionCounters) -> bool:
        return session.trading_times >= self.trades_per_account

    def decide(self, session: SessionCounters, balances: Balances, prices: Prices) -> TradeDecision:
        native_usd = balances.native_units * prices.native
        token_usd = balances.token_units * prices.token
        side, usd = equalization_usd(native_usd, token_usd, self.overshoot_pct)

        if side == BUY:
            amount = to_base_units(usd / prices.native, NATIVE_DECIMALS) if prices.native > 0 else 0
            amount = min(amount, balances.native)
        else:
            amount = to_base_units(usd / prices.token, balances.token_decimals) if prices.token > 0 else 0
            amount = min(amount, balances.token)

        if amount <= 0:
            return TradeDecision(should_trade=False, skip_reason="nothing_to_trade")
        return _decision(side, self.token_address, amount)


# ---------------------------------------------------------------------------
# Randomized-amount policy
# ---------------------------------------------------------------------------

class RandomizedAmountPolicy:
    """Buy ``consecutive_buys`` times, then sell ``consecutive_sells`` times.

    Each trade is worth a uniformly random amount of native currency between
    ``min_amount`` and ``max_amount``; sells convert that value to tokens at
    the spot price.
    """

    name = "random"

    def __init__(
        self,
        token_address: str,
        consecutive_buys: int,
        consecutive_sells: int,
        min_amount: float,
        max_amount: float,
        native_reserve: float = 0.0,
        rng: random.Random | None = None,
    ):
        if min_amount > max_amount:
            raise ValueError("min_amount must not exceed max_amount")
        self.token_address = token_address
        self.consecutive_buys = consecutive_buys
        self.consecutive_sells = consecutive_sells
        self.min_amount = min_amount
        self.max_amount = max_amount
        self.native_reserve = native_reserve
        self._rng = rng or random.Random()

    def next_side(self, session: SessionCounters) -> str:
        return BUY if session.buy_count < self.consecutive_buys else SELL

    def is_complete(self, session: SessionCounters) -> bool:
        return session.buy_count >= self.consecutive_buys and session.sell_count >= self.consecutive_sells

    def decide(self, session: SessionCounters, balances: Balances, prices: Prices) -> TradeDecision:
        side = self.next_side(session)
        native_amount = self._rng.uniform(self.min_amount, self.max_amount)

        if side == BUY:
            amount = to_base_units(native_amount, NATIVE_DECIMALS)
            spendable = balances.native - to_base_units(self.native_reserve, NATIVE_DECIMALS)
            if amount > spendable:
                return TradeDecision(should_trade=False, side=BUY, amount=amount, skip_reason="insufficient_balance")
            return _decision(BUY, self.token_address, amount)

        if prices.token <= 0:
            return TradeDecision(should_trade=False, side=SELL, skip_reason="nothing_to_trade")
        token_amount = native_amount * prices.native / prices.token
        amount = to_base_units(token_amount, balances.token_decimals)
        if amount <= 0 or amount > balances.token:
            return TradeDecision(should_trade=False, side=SELL, amount=amount, skip_reason="insufficient_balance")
        return _decision(SELL, self.token_address, amount)


def build_policy(settings, token_address: str) -> SizingPolicy:
    """Policy selected by ``settings.sizing_policy``."""
    if settings.sizing_policy == "random":
        return RandomizedAmountPolicy(
            token_address=token_address,
            consecutive_buys=settings.consecutive_buys,
            consecutive_sells=settings.consecutive_sells,
            min_amount=settings.min_trade_amount,
            max_amount=settings.max_trade_amount,
            native_reserve=settings.native_reserve,
        )
    return BalanceEqualizationPolicy(
        token_address=token_address,
        trades_per_account=settings.sub_account_trading_max,
        overshoot_pct=settings.overshoot_pct,
    )
