"""Per-slot trading loop: account lifecycle, trade sizing and rotation.

Each concurrency slot runs one loop:
bootstrap -> approve -> trade, trade, ... -> rotate -> approve -> trade ...

Every chain or swap-service step runs through ``_retrying``. Retryable errors
are logged and retried forever after a fixed delay; a FundsInsufficientError
ends the trading cycle and forces a rotation with whatever balance is left.
A reverted transaction is rebuilt and resent, never re-awaited. Once a stop
is requested, a failing step ends its loop instead of retrying.
A new account is always written to the vault before funds are sent to it.
"""

import asyncio
import json
import logging
import random
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from tradeloop.errors import (
    ErrorClass,
    FundsInsufficientError,
    NetworkError,
    TransactionRevertedError,
    classify,
    describe,
)
from tradeloop.schemas.swap import SwapParams
from tradeloop.services.accounts import Account, generate_account
from tradeloop.services.sizing import (
    Balances,
    Prices,
    SizingPolicy,
    TradeDecision,
    from_base_units,
    to_base_units,
)
from tradeloop.utils.constants import (
    NATIVE_DECIMALS,
    NATIVE_TOKEN_ADDRESS,
    UNLIMITED_ALLOWANCE_THRESHOLD,
)

logger = logging.getLogger(__name__)


class StopRequested(Exception):
    """Raised out of a retry loop when a stop was requested while a step was failing."""


class LoopState(str, Enum):
    BOOTSTRAPPING = "bootstrapping"
    APPROVING = "approving"
    TRADING = "trading"
    ROTATING = "rotating"
    STOPPED = "stopped"
    ABANDONED = "abandoned"


@dataclass
class TradingSession:
    """One active sub-account and its trade counters."""
    slot: int
    account: Account
    buy_count: int = 0
    sell_count: int = 0
    approved: bool = False
    state: LoopState = LoopState.BOOTSTRAPPING

    @property
    def trading_times(self) -> int:
        return self.buy_count + self.sell_count

    @property
    def tag(self) -> str:
        return f"[{self.slot}:{self.account.short}]"

    def record(self, side: str) -> None:
        if side == "buy":
            self.buy_count += 1
        else:
            self.sell_count += 1

    def to_status(self) -> dict:
        return {
            "slot": self.slot,
            "address": self.account.address,
            "state": self.state.value,
            "buy_count": self.buy_count,
            "sell_count": self.sell_count,
            "approved": self.approved,
        }


@dataclass(frozen=True)
class TradingConfig:
    chain_id: int
    token_address: str
    slippage: float = 1.0
    init_fee: float = 0.0
    init_token: float = 0.0
    concurrency: int = 1
    retry_delay: float = 3.0
    min_wait: float = 0.0
    max_wait: float = 0.0
    rotation_token_pct: int = 99
    max_balance_waits: int = 5
    snapshot_path: str | None = None

    @classmethod
    def from_settings(cls, settings) -> "TradingConfig":
        return cls(
            chain_id=settings.chain_id,
            token_address=settings.token_address,
            slippage=settings.slippage,
            init_fee=settings.init_fee,
            init_token=settings.init_token,
            concurrency=settings.sub_account_concurrency,
            retry_delay=settings.retry_delay_seconds,
            min_wait=settings.min_wait_seconds,
            max_wait=settings.max_wait_seconds,
            rotation_token_pct=settings.rotation_token_pct,
            max_balance_waits=settings.max_balance_waits,
            snapshot_path=settings.snapshot_path or None,
        )


def _notify(message: str):
    """Send a Telegram notification (fire-and-forget)."""
    try:
        from tradeloop.services.telegram_bot import get_bot
        bot = get_bot()
        if bot and bot._loop:
            asyncio.run_coroutine_threadsafe(bot.send_notification(message), bot._loop)
    except Exception as e:
        logger.debug(f"Notification not sent: {e}")


class TradeOrchestrator:
    def __init__(
        self,
        config: TradingConfig,
        chain,
        swap,
        vault,
        policy: SizingPolicy,
        main_account: Account,
        journal=None,
        sleep=asyncio.sleep,
        rng: random.Random | None = None,
        account_factory=generate_account,
    ):
        self.config = config
        self.chain = chain
        self.swap = swap
        self.vault = vault
        self.policy = policy
        self.main_account = main_account
        self.journal = journal
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._account_factory = account_factory
        self._stop = asyncio.Event()
        self._token_decimals: int | None = None
        self.sessions: dict[int, TradingSession] = {}

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Request a stop; loops exit at their next iteration boundary."""
        if not self.stopping:
            logger.info("Stop requested; trading loops will exit after the current step")
        self._stop.set()

    def status(self) -> dict:
        return {
            "stopping": self.stopping,
            "policy": self.policy.name,
            "sessions": [self.sessions[slot].to_status() for slot in sorted(self.sessions)],
        }

    async def run(self) -> None:
        """Bootstrap, then run every slot until stopped or abandoned.

        Returns only once every slot loop has exited. A fatal error in one slot
        stops the others, and is re-raised after they have wound down.
        """
        try:
            sessions = await self.bootstrap()
        except StopRequested:
            logger.info("Stopped during bootstrap")
            return

        results = await asyncio.gather(
            *(self.run_loop(session) for session in sessions), return_exceptions=True
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise errors[0]
        if not self.stopping:
            logger.warning("All sub-accounts are insufficient, finished")
            _notify("All sub-accounts are insufficient; trading finished")

    async def run_loop(self, session: TradingSession) -> TradingSession:
        while not self.stopping:
            self._write_snapshot()
            try:
                session = await self.run_cycle(session)
            except StopRequested:
                break
            except FundsInsufficientError as e:
                session.state = LoopState.ABANDONED
                logger.error(f"{session.tag} Rotation failed, abandoning slot: {describe(e)}")
                await self._log(session, "error", "abandoned", message=e.message, error=describe(e))
                _notify(f"{session.tag} abandoned: {e.message}")
                self.sessions.pop(session.slot, None)
                self._write_snapshot()
                return session
            except Exception as e:
                logger.error(f"{session.tag} Trading loop failed, stopping all slots: {describe(e)}")
                self.stop()
                raise
        session.state = LoopState.STOPPED
        logger.info(f"{session.tag} Trading loop stopped")
        return session

    async def run_cycle(self, session: TradingSession) -> TradingSession:
        """Approve, trade until the policy is satisfied, then rotate."""
        try:
            await self.approve(session)
            await self.trade(session)
        except FundsInsufficientError as e:
            logger.warning(f"{session.tag} Funds insufficient, forcing rotation: {describe(e)}")
            await self._log(session, "error", "forced_rotation", message=e.message, error=describe(e))
            _notify(f"{session.tag} funds insufficient, forcing rotation")

        if self.stopping:
            return session
        return await self.rotate(session)

    # ------------------------------------------------------------------
    # Bootstrapping
    # ------------------------------------------------------------------

    async def bootstrap(self) -> list[TradingSession]:
        """Generate and persist one account per slot, then fund them from the main account."""
        sessions = []
        for slot in range(self.config.concurrency):
            account = self._account_factory()
            tag = f"[{slot}:{account.short}]"
            await self._retrying(tag, "vault append", lambda: self._persist(account))
            session = TradingSession(slot=slot, account=account)
            self.sessions[slot] = session
            sessions.append(session)
            logger.info(f"{tag} Generated sub-account {account.address}")
        self._write_snapshot()

        if self.config.init_fee > 0 or self.config.init_token > 0:
            await self._fund(sessions)
        return sessions

    async def _fund(self, sessions: list[TradingSession]) -> None:
        main = self.main_account
        try:
            for session in sessions:
                if self.config.init_fee > 0:
                    amount = to_base_units(self.config.init_fee, NATIVE_DECIMALS)
                    tx_hash = await self._send_confirmed(
                        session.tag, "fund native",
                        lambda: self.chain.send_transaction(main, {"to": session.account.address, "value": amount}),
                    )
                    logger.info(f"{session.tag} Funded {self.config.init_fee} native from {main.short}")
                    await self._log(session, "success", "fund", message=f"native {self.config.init_fee}", tx_hash=tx_hash)

                if self.config.init_token > 0:
                    decimals = await self._get_token_decimals(session.tag)
                    amount = to_base_units(self.config.init_token, decimals)
                    tx_hash = await self._send_confirmed(
                        session.tag, "fund token",
                        lambda: self.chain.transfer_token(
                            main, self.config.token_address, session.account.address, amount
                        ),
                    )
                    logger.info(f"{session.tag} Funded {self.config.init_token} tokens from {main.short}")
                    await self._log(session, "success", "fund", message=f"token {self.config.init_token}", tx_hash=tx_hash)
            logger.info("Initialized tokens and fee for all sub-accounts")
        except FundsInsufficientError as e:
            logger.error(f"Funding sub-accounts from {main.address} failed: {describe(e)}")

    # ------------------------------------------------------------------
    # Approving
    # ------------------------------------------------------------------

    async def approve(self, session: TradingSession) -> None:
        """Make sure the swap router may spend this account's tokens. Once per account."""
        if session.approved:
            return
        session.state = LoopState.APPROVING
        account = session.account
        token = self.config.token_address

        allowance = await self._retrying(
            session.tag, "allowance",
            lambda: self.swap.get_allowance(self.config.chain_id, account.address, token),
        )
        if allowance >= UNLIMITED_ALLOWANCE_THRESHOLD:
            session.approved = True
            logger.info(f"{session.tag} Allowance already covers swaps, skipping approval")
            return

        async def _send_approve() -> str:
            approve_tx = await self.swap.generate_approve(self.config.chain_id, token)
            return await self.chain.send_transaction(account, approve_tx.to_tx())

        tx_hash = await self._send_confirmed(session.tag, "approve", _send_approve)
        session.approved = True
        logger.info(f"{session.tag} Approved token {token} on the swap router")
        await self._log(session, "success", "approve", tx_hash=tx_hash)

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    async def trade(self, session: TradingSession) -> None:
        session.state = LoopState.TRADING
        while not self.policy.is_complete(session):
            if self.stopping:
                return
            try:
                await self.swap_once(session)
            except TransactionRevertedError as e:
                # balances and a fresh quote are read again on the next pass
                logger.error(f"{session.tag} Swap reverted, requoting: {describe(e)}")
                await self._log(session, "error", "swap_reverted", message=e.message, error=describe(e))
                await self._sleep(self.config.retry_delay)
            await self._pause()

    async def swap_once(self, session: TradingSession) -> str:
        account = session.account
        decision = await self._next_decision(session)
        params = SwapParams(
            src=decision.src,
            dst=decision.dst,
            amount=decision.amount,
            from_address=account.address,
            slippage=self.config.slippage,
        )
        quote = await self._retrying(
            session.tag, "swap quote",
            lambda: self.swap.generate_swap_call_data(self.config.chain_id, params),
        )
        tx_hash = await self._retrying(
            session.tag, "swap send",
            lambda: self.chain.send_transaction(account, quote.transaction.to_tx()),
        )
        await self._retrying(session.tag, "swap receipt", lambda: self.chain.wait_for_receipt(tx_hash))
        session.record(decision.side)

        src_decimals, dst_decimals = await self._decimals_for(session.tag, decision)
        amount = from_base_units(decision.amount, src_decimals)
        received = from_base_units(quote.destination_amount, dst_decimals)
        logger.info(
            f"{session.tag} {decision.side} #{session.trading_times}: swapped {amount} {decision.src} "
            f"for {received} {decision.dst} (tx {tx_hash})"
        )
        if self.journal is not None:
            await asyncio.to_thread(
                self.journal.record_swap,
                slot=session.slot,
                account=account.address,
                side=decision.side,
                src=decision.src,
                dst=decision.dst,
                amount=amount,
                destination_amount=received,
                tx_hash=tx_hash,
            )
        return tx_hash

    async def _next_decision(self, session: TradingSession) -> TradeDecision:
        """Ask the policy for a trade, waiting while the balance is short."""
        waits = self.config.max_balance_waits
        decision = None
        for attempt in range(1, waits + 1):
            balances = await self._read_balances(session)
            prices = await self._read_prices(session.tag)
            decision = self.policy.decide(session, balances, prices)
            if decision.should_trade:
                return decision
            logger.info(
                f"{session.tag} Skipping {decision.side or 'trade'} ({decision.skip_reason}), "
                f"balance check {attempt}/{waits}"
            )
            if attempt < waits:
                if self.stopping:
                    raise StopRequested()
                await self._pause()
        raise FundsInsufficientError(
            f"balance too low for the next {decision.side or 'trade'} after {waits} checks",
            code="BALANCE_TOO_LOW",
        )

    async def _read_balances(self, session: TradingSession) -> Balances:
        address = session.account.address
        native = await self._retrying(session.tag, "balance", lambda: self.chain.get_balance(address))
        token = await self._retrying(
            session.tag, "token balance",
            lambda: self.chain.get_token_balance(self.config.token_address, address),
        )
        decimals = await self._get_token_decimals(session.tag)
        return Balances(native=native, token=token, token_decimals=decimals)

    async def _read_prices(self, tag: str) -> Prices:
        token = self.config.token_address.lower()

        async def _fetch() -> Prices:
            prices = await self.swap.spot_price(self.config.chain_id, [NATIVE_TOKEN_ADDRESS, token])
            if NATIVE_TOKEN_ADDRESS not in prices or token not in prices:
                raise NetworkError(f"spot price missing for {NATIVE_TOKEN_ADDRESS} or {token}", body=str(prices))
            return Prices(native=prices[NATIVE_TOKEN_ADDRESS], token=prices[token])

        return await self._retrying(tag, "spot price", _fetch)

    async def _get_token_decimals(self, tag: str) -> int:
        if self._token_decimals is None:
            self._token_decimals = await self._retrying(
                tag, "token decimals",
                lambda: self.chain.get_token_decimals(self.config.token_address),
            )
        return self._token_decimals

    async def _decimals_for(self, tag: str, decision: TradeDecision) -> tuple[int, int]:
        token_decimals = await self._get_token_decimals(tag)
        if decision.src == NATIVE_TOKEN_ADDRESS:
            return NATIVE_DECIMALS, token_decimals
        return token_decimals, NATIVE_DECIMALS

    # ------------------------------------------------------------------
    # Rotating
    # ------------------------------------------------------------------

    async def rotate(self, session: TradingSession) -> TradingSession:
        """Move the outgoing account's balances into a freshly generated, persisted account."""
        session.state = LoopState.ROTATING
        old = session.account
        new = self._account_factory()
        token = self.config.token_address

        # Funds may only move once the new key is on disk.
        await self._retrying(session.tag, "vault append", lambda: self._persist(new))

        await self._transfer_tokens(session.tag, old, new.address)
        await self._transfer_remaining_native(session.tag, old, new.address)

        new_session = TradingSession(slot=session.slot, account=new, state=LoopState.APPROVING)
        self.sessions[session.slot] = new_session
        self._write_snapshot()
        logger.info(f"{session.tag} Rotated to new sub-account {new.address}")
        await self._log(new_session, "success", "rotate", message=f"from {old.address}")
        _notify(f"{session.tag} rotated to {new.address}")
        return new_session

    async def _transfer_tokens(self, tag: str, account: Account, to: str) -> None:
        token = self.config.token_address
        sent = 0

        async def _send() -> str | None:
            nonlocal sent
            balance = await self.chain.get_token_balance(token, account.address)
            sent = balance * self.config.rotation_token_pct // 100
            if sent <= 0:
                return None
            return await self.chain.transfer_token(account, token, to, sent)

        if await self._send_confirmed(tag, "token transfer", _send):
            logger.info(f"{tag} Transferred {sent} token units to {to}")

    async def _transfer_remaining_native(self, tag: str, account: Account, to: str) -> None:
        sent = 0

        async def _send() -> str | None:
            nonlocal sent
            balance = await self.chain.get_balance(account.address)
            gas_price = await self.chain.get_gas_price()
            gas = await self.chain.estimate_gas({"from": account.address, "to": to, "value": 0})
            sent = balance - gas * gas_price
            if sent <= 0:
                logger.warning(f"{tag} Native balance {balance} does not cover transfer gas, leaving it behind")
                return None
            return await self.chain.send_transaction(
                account, {"to": to, "value": sent, "gas": gas, "gasPrice": gas_price}
            )

        if await self._send_confirmed(tag, "native transfer", _send):
            logger.info(f"{tag} Transferred {from_base_units(sent, NATIVE_DECIMALS)} native to {to}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _persist(self, account: Account) -> None:
        self.vault.append(account)

    async def _send_confirmed(self, tag: str, label: str, send) -> str | None:
        """Send a transaction with ``send`` and wait until it is mined successfully.

        ``send`` builds and submits the transaction and returns its hash, or None
        when there is nothing to send. A reverted transaction is never waited on
        again: ``send`` runs anew, so quotes, balances and the nonce are fresh.
        """
        while True:
            tx_hash = await self._retrying(tag, label, send)
            if tx_hash is None:
                return None
            try:
                await self._retrying(tag, f"{label} receipt", lambda: self.chain.wait_for_receipt(tx_hash))
                return tx_hash
            except TransactionRevertedError as e:
                if self.stopping:
                    raise StopRequested() from e
                logger.error(
                    f"{tag} {label} {tx_hash} reverted, resending in {self.config.retry_delay}s: "
                    f"{json.dumps(describe(e), default=str)}"
                )
                await self._sleep(self.config.retry_delay)

    async def _retrying(self, tag: str, label: str, thunk):
        """Run ``thunk`` until it succeeds or fails with a non-retryable error.

        Raises StopRequested instead of retrying once a stop was requested.
        """
        while True:
            try:
                return await thunk()
            except Exception as e:
                if classify(e) is not ErrorClass.RETRYABLE:
                    raise
                if self.stopping:
                    raise StopRequested() from e
                logger.error(
                    f"{tag} {label} failed, retrying in {self.config.retry_delay}s: "
                    f"{json.dumps(describe(e), default=str)}"
                )
                await self._sleep(self.config.retry_delay)

    async def _pause(self) -> None:
        delay = self._rng.uniform(self.config.min_wait, self.config.max_wait)
        if delay > 0:
            await self._sleep(delay)

    def _write_snapshot(self) -> None:
        """Overwrite the plaintext list of active accounts. Recovery aid only."""
        if not self.config.snapshot_path:
            return
        accounts = [
            {"address": s.account.address, "privateKey": s.account.private_key}
            for _, s in sorted(self.sessions.items())
        ]
        try:
            Path(self.config.snapshot_path).write_text(json.dumps(accounts, indent=1), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write execution snapshot {self.config.snapshot_path}: {e}")

    async def _log(self, session: TradingSession, status: str, action: str, **kwargs) -> None:
        # database commits run off the event loop so the slots and the swap throttle keep going
        if self.journal is not None:
            await asyncio.to_thread(
                self.journal.log,
                slot=session.slot,
                account=session.account.address,
                status=status,
                action=action,
                **kwargs,
            )
