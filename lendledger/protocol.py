"""
protocol.py - Lifecycle & Liquidation Controller

LendingProtocol is the single writer of all lending state. It is the only
module that mutates positions, asset TVL, ledger totals and oracle baselines,
and every mutation happens inside one of the operations below.

Every mutating operation runs the same guard:
    1. reentrancy lock (ReentrantCall if another operation is in progress)
    2. halt check (ProtocolHalted while paused; admin operations are exempt)
    3. snapshot of all state
    4. authorization, validation, token transfers, state changes, event records
    5. on any exception the snapshot is restored before the exception propagates

so a rejected operation leaves totals, positions, TVL, token balances and the
event log exactly as they were.

Borrower operations:
    create_position, supply_collateral, withdraw_collateral, borrow, repay,
    exit_position, transfer_collateral, liquidate, flash_loan

Lender operations:
    supply_liquidity, withdraw_liquidity, claim_reward

Administrative operations take the caller explicitly and check it against
AccessControl (MANAGER for configuration, PAUSER for halting).
"""

from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Protocol, runtime_checkable

from .access import AccessControl, Role
from .assets import Asset, AssetRegistry, OracleSource
from .config import GlobalOracleConfig, ProtocolConfig, TierParameters
from .core import (
    WAD, BPS_SCALE, MAX_COLLATERAL_ASSETS, MAX_POSITIONS_PER_USER, REPAY_ALL, SYSTEM_WALLET,
    AssetTier, EventRecord, PositionStatus,
    ZeroAmount, SupplyCapExceeded, PositionLimitReached,
    AssetLimitReached, IsolationViolation, NotLiquidatable, FlashLoanFailed,
    TransferFailed, CreditLimitExceeded, IsolationDebtCapExceeded,
    InsufficientLiquidity, InsufficientCollateral, InsufficientGovernanceTokens,
    ProtocolHalted, ReentrantCall, ValidationError, InvalidConfiguration,
)
from .oracle import OracleEngine
from .positions import Position, PositionBook
from .rewards import RewardDistributor, calculate_reward, is_reward_eligible
from .risk import (
    MarketState, PositionSummary, RiskEngine,
    calculate_borrow_rate, calculate_supply_rate, calculate_utilization,
)
from .tokens import ExecuteResult, Move, Token, TokenLedger

logger = logging.getLogger(__name__)


# ============================================================================
# SUPPORTING TYPES
# ============================================================================

@dataclass
class LedgerTotals:
    """
    Aggregate balances of the protocol.

    Attributes:
        total_borrow: Debt of all ACTIVE positions, interest folded at last touch
        total_supplied_liquidity: Base token supplied by lenders (principal)
        total_accrued_borrower_interest: Interest folded into debts so far
        total_accrued_supplier_interest: Yield paid out to withdrawing lenders
        total_flash_loan_fees: Fees collected from flash loans
    """
    total_borrow: int = 0
    total_supplied_liquidity: int = 0
    total_accrued_borrower_interest: int = 0
    total_accrued_supplier_interest: int = 0
    total_flash_loan_fees: int = 0


@runtime_checkable
class FlashLoanReceiver(Protocol):
    """
    Callback target of flash_loan().

    The receiver gets `amount` of the base token in its wallet before
    execute_operation is called and must transfer amount + fee back to the
    protocol wallet before returning True.
    """
    address: str

    def execute_operation(self, token: str, amount: int, fee: int, initiator: str, params: Any) -> bool:
        ...


# ============================================================================
# CONTROLLER
# ============================================================================

class LendingProtocol:
    """
    Collateralized lending ledger.

    Example:
        protocol = LendingProtocol("lend", tokens, access, base_token="USDC",
                                   governance_token="GOV", initial_time=t0)
        protocol.add_asset("manager", weth_asset)
        pid = protocol.create_position("alice", "WETH")
        protocol.supply_collateral("alice", "WETH", 10 * 10**18, pid)
        protocol.borrow("alice", pid, 10_000 * 10**6)
    """

    def __init__(
        self,
        name: str,
        tokens: TokenLedger,
        access: AccessControl,
        base_token: str,
        governance_token: str,
        oracle_config: Optional[GlobalOracleConfig] = None,
        config: Optional[ProtocolConfig] = None,
        tier_parameters: Optional[TierParameters] = None,
        reward_distributor: Optional[RewardDistributor] = None,
        initial_time: Optional[datetime] = None,
        max_positions_per_user: int = MAX_POSITIONS_PER_USER,
        verbose: bool = False,
    ):
        self.name = name
        self.address = name
        self.tokens = tokens
        self.access = access
        self.base_token = base_token
        self.governance_token = governance_token
        self.base_decimals = tokens.get_token(base_token).decimals
        tokens.get_token(governance_token)

        self.lp_token = f"{name}-LP"
        if self.lp_token not in tokens.tokens:
            tokens.register_token(Token(self.lp_token, f"{name} liquidity share", self.base_decimals))
        if not tokens.is_registered(self.address):
            tokens.register_wallet(self.address)

        self.registry = AssetRegistry()
        self.positions = PositionBook()
        self.oracle = OracleEngine(self.registry, oracle_config or GlobalOracleConfig())
        self.risk = RiskEngine(self.registry, self.oracle, self.base_decimals)
        self.config = config or ProtocolConfig()
        self.tier_parameters = tier_parameters or TierParameters()
        self.reward_distributor = reward_distributor
        self.max_positions_per_user = max_positions_per_user

        self.totals = LedgerTotals()
        self.liquidity_accrue_time: Dict[str, datetime] = {}
        self.event_log: List[EventRecord] = []
        self.paused = False
        self.verbose = verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._active_operation: Optional[str] = None

    # ========================================================================
    # TIME
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    # ========================================================================
    # OPERATION GUARD
    # ========================================================================

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "registry": self.registry.snapshot(),
            "positions": self.positions.snapshot(),
            "oracle": self.oracle.snapshot(),
            "tokens": self.tokens.clone(),
            "totals": replace(self.totals),
            "accrue": dict(self.liquidity_accrue_time),
            "config": self.config,
            "tiers": self.tier_parameters,
            "paused": self.paused,
            "events": len(self.event_log),
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self.registry.restore(snapshot["registry"])
        self.positions.restore(snapshot["positions"])
        self.oracle.restore(snapshot["oracle"])
        self.tokens.restore_from(snapshot["tokens"])
        self.totals = replace(snapshot["totals"])
        self.liquidity_accrue_time = dict(snapshot["accrue"])
        self.config = snapshot["config"]
        self.tier_parameters = snapshot["tiers"]
        self.paused = snapshot["paused"]
        del self.event_log[snapshot["events"]:]

    @contextmanager
    def _operation(self, name: str, caller: str, halt_check: bool = True) -> Iterator[None]:
        if self._active_operation is not None:
            raise ReentrantCall(
                f"{name} entered while {self._active_operation} is in progress",
                operation=name, active=self._active_operation, caller=caller,
            )
        self._active_operation = name
        try:
            if halt_check and self.paused:
                raise ProtocolHalted(f"{name} rejected: protocol is paused", operation=name, caller=caller)
            snapshot = self._snapshot()
            try:
                yield
            except Exception as exc:
                self._restore(snapshot)
                logger.warning(
                    "Operation rejected",
                    extra={
                        "event": "protocol.rejected",
                        "operation": name,
                        "caller": caller,
                        "fault": type(exc).__name__,
                        "details": getattr(exc, "details", {}),
                    },
                )
                raise
        finally:
            self._active_operation = None

    def _emit(self, name: str, caller: str, **payload: Any) -> EventRecord:
        record = EventRecord(
            name=name,
            caller=caller,
            timestamp=self._current_time,
            sequence_number=len(self.event_log),
            payload=payload,
        )
        self.event_log.append(record)
        logger.debug("Event committed", extra={"event": f"protocol.{name}", "caller": caller})
        if self.verbose:
            print(repr(record))
        return record

    def _transfer(self, moves: List[Move], memo: str) -> None:
        if self.tokens.execute(moves, memo=memo) != ExecuteResult.APPLIED:
            raise TransferFailed(
                f"{memo}: token transfer rejected: {self.tokens.last_rejection}",
                memo=memo, reason=self.tokens.last_rejection,
            )

    def _move(self, quantity: int, token: str, source: str, dest: str, memo: str) -> None:
        self._transfer([Move(quantity, token, source, dest, memo)], memo)

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def market_state(self) -> MarketState:
        return MarketState(
            total_borrow=self.totals.total_borrow,
            total_supplied=self.totals.total_supplied_liquidity,
            protocol_balance=self.tokens.get_balance(self.address, self.base_token),
        )

    def _owed(self, position: Position) -> int:
        return self.risk.debt_with_interest(
            position, self.market_state(), self.config, self.tier_parameters, self._current_time,
        )

    def _accrue(self, position: Position, caller: str) -> int:
        """Fold interest since the last touch into the position and total_borrow."""
        owed = self._owed(position)
        accrued = owed - position.debt
        if accrued > 0:
            position.debt = owed
            self.totals.total_borrow += accrued
            self.totals.total_accrued_borrower_interest += accrued
            self._emit("InterestAccrued", caller, owner=position.owner,
                       position_id=position.position_id, accrued=accrued)
        position.last_accrual = self._current_time
        return accrued

    def _credit_collateral(self, position: Position, asset: str, amount: int) -> None:
        config = self.registry.require_active(asset)
        tvl = self.registry.get_tvl(asset)
        if tvl + amount > config.max_supply_threshold:
            raise SupplyCapExceeded(
                f"{asset}: supply would reach {tvl + amount} above cap {config.max_supply_threshold}",
                asset=asset, cap=config.max_supply_threshold, tvl=tvl, requested=amount,
            )
        if config.tier == AssetTier.ISOLATED and not position.isolated:
            raise IsolationViolation(
                f"{asset} is ISOLATED tier and position {position.position_id} is not isolated",
                asset=asset, owner=position.owner, position_id=position.position_id,
            )
        if position.isolated and asset != position.isolated_asset:
            raise IsolationViolation(
                f"position {position.position_id} is isolated to {position.isolated_asset}",
                asset=asset, isolated_asset=position.isolated_asset,
                owner=position.owner, position_id=position.position_id,
            )
        if asset not in position.collateral and len(position.collateral) >= MAX_COLLATERAL_ASSETS:
            raise AssetLimitReached(
                f"position {position.position_id} already holds {MAX_COLLATERAL_ASSETS} assets",
                limit=MAX_COLLATERAL_ASSETS, owner=position.owner, position_id=position.position_id,
            )
        position.collateral[asset] = position.collateral_amount(asset) + amount
        self.registry.adjust_tvl(asset, amount)

    def _debit_collateral(self, position: Position, asset: str, amount: int) -> None:
        held = position.collateral_amount(asset)
        if held < amount:
            raise InsufficientCollateral(
                f"position {position.position_id} holds {held} {asset}, {amount} requested",
                asset=asset, available=held, requested=amount,
                owner=position.owner, position_id=position.position_id,
            )
        remaining = held - amount
        if remaining == 0 and not position.isolated:
            del position.collateral[asset]
        else:
            position.collateral[asset] = remaining
        self.registry.adjust_tvl(asset, -amount)

        if position.debt > 0:
            owed = self._owed(position)
            limit = self.risk.credit_limit(position.collateral, self._current_time)
            if limit < owed:
                raise CreditLimitExceeded(
                    f"withdrawal leaves credit limit {limit} below debt {owed}",
                    credit_limit=limit, debt=owed,
                    owner=position.owner, position_id=position.position_id,
                )

    def _repay(self, position: Position, caller: str, amount: int) -> int:
        self._accrue(position, caller)
        if position.debt == 0:
            return 0
        paid = min(amount, position.debt)
        self._move(paid, self.base_token, caller, self.address, "repay")
        position.debt -= paid
        self.totals.total_borrow -= paid
        self._emit("Repay", caller, owner=position.owner, position_id=position.position_id,
                   amount=paid, remaining=position.debt)
        return paid

    def _withdraw_everything(self, position: Position, recipient: str, memo: str) -> Dict[str, int]:
        released = {asset: amount for asset, amount in position.collateral.items() if amount > 0}
        moves = [Move(amount, asset, self.address, recipient, memo) for asset, amount in released.items()]
        self._transfer(moves, memo)
        for asset, amount in released.items():
            self.registry.adjust_tvl(asset, -amount)
        position.collateral.clear()
        return released

    @staticmethod
    def _require_amount(amount: int, what: str) -> None:
        if amount <= 0:
            raise ZeroAmount(f"{what} amount must be positive", amount=amount)

    # ========================================================================
    # BORROWER OPERATIONS
    # ========================================================================

    def create_position(self, caller: str, asset: str, isolated: bool = False) -> int:
        """
        Open a new position and return its id.

        An isolated position is bound to `asset` immediately, with a zero balance.

        Raises:
            AssetNotListed, AssetInactive, IsolationViolation, PositionLimitReached
        """
        with self._operation("create_position", caller):
            listed = self.registry.require_active(asset)
            if isolated and listed.tier != AssetTier.ISOLATED:
                raise IsolationViolation(
                    f"{asset} is {listed.tier.name} tier; only ISOLATED assets back isolated positions",
                    asset=asset, tier=listed.tier.name, owner=caller,
                )
            count = self.positions.count(caller)
            if count >= self.max_positions_per_user:
                raise PositionLimitReached(
                    f"{caller} already holds {count} positions",
                    owner=caller, limit=self.max_positions_per_user,
                )
            position = self.positions.create(caller, self._current_time, isolated=isolated,
                                             isolated_asset=asset if isolated else None)
            if isolated:
                position.collateral[asset] = 0
            self._emit("PositionCreated", caller, position_id=position.position_id,
                       isolated=isolated, asset=asset if isolated else None)
            return position.position_id

    def supply_collateral(self, caller: str, asset: str, amount: int, position_id: int) -> None:
        """
        Deposit collateral into one of the caller's positions.

        Raises:
            ZeroAmount, AssetNotListed, AssetInactive, SupplyCapExceeded,
            IsolationViolation, AssetLimitReached, TransferFailed
        """
        with self._operation("supply_collateral", caller):
            self._require_amount(amount, "supply")
            position = self.positions.require_active(caller, position_id)
            self._credit_collateral(position, asset, amount)
            self._move(amount, asset, caller, self.address, "supply_collateral")
            self._emit("SupplyCollateral", caller, position_id=position_id, asset=asset, amount=amount)

    def withdraw_collateral(self, caller: str, asset: str, amount: int, position_id: int) -> None:
        """
        Withdraw collateral from one of the caller's positions.

        Oracle prices are only read when the position carries debt.

        Raises:
            ZeroAmount, InsufficientCollateral, CreditLimitExceeded, OracleError
        """
        with self._operation("withdraw_collateral", caller):
            self._require_amount(amount, "withdraw")
            position = self.positions.require_active(caller, position_id)
            self._debit_collateral(position, asset, amount)
            self._move(amount, asset, self.address, caller, "withdraw_collateral")
            self._emit("WithdrawCollateral", caller, position_id=position_id, asset=asset, amount=amount)

    def borrow(self, caller: str, position_id: int, amount: int) -> None:
        """
        Borrow base token against a position.

        Raises:
            ZeroAmount, InsufficientLiquidity, IsolationDebtCapExceeded,
            CreditLimitExceeded, OracleError
        """
        with self._operation("borrow", caller):
            self._require_amount(amount, "borrow")
            position = self.positions.require_active(caller, position_id)
            self._accrue(position, caller)

            available = self.tokens.get_balance(self.address, self.base_token)
            if available < amount:
                raise InsufficientLiquidity(
                    f"protocol holds {available}, {amount} requested",
                    available=available, requested=amount,
                )
            new_debt = position.debt + amount
            if position.isolated:
                isolated = self.registry.get(position.isolated_asset)
                if new_debt > isolated.isolation_debt_cap:
                    raise IsolationDebtCapExceeded(
                        f"debt {new_debt} above isolation cap {isolated.isolation_debt_cap}",
                        asset=isolated.symbol, cap=isolated.isolation_debt_cap, debt=new_debt,
                    )
            limit = self.risk.credit_limit(position.collateral, self._current_time)
            if new_debt > limit:
                raise CreditLimitExceeded(
                    f"debt {new_debt} above credit limit {limit}",
                    credit_limit=limit, debt=new_debt, owner=caller, position_id=position_id,
                )

            self._move(amount, self.base_token, self.address, caller, "borrow")
            position.debt = new_debt
            self.totals.total_borrow += amount
            self._emit("Borrow", caller, position_id=position_id, amount=amount, debt=new_debt)

    def repay(self, caller: str, position_id: int, amount: int) -> int:
        """
        Repay debt; amounts above the outstanding debt (e.g. REPAY_ALL) are capped.

        Returns:
            The amount actually paid (0 when nothing was owed)
        """
        with self._operation("repay", caller):
            self._require_amount(amount, "repay")
            position = self.positions.require_active(caller, position_id)
            return self._repay(position, caller, amount)

    def exit_position(self, caller: str, position_id: int) -> Dict[str, int]:
        """
        Repay everything, return all collateral to the owner and close the position.

        Returns:
            asset -> amount released
        """
        with self._operation("exit_position", caller):
            position = self.positions.require_active(caller, position_id)
            self._repay(position, caller, REPAY_ALL)
            released = self._withdraw_everything(position, caller, "exit_position")
            position.status = PositionStatus.CLOSED
            self._emit("PositionClosed", caller, position_id=position_id, released=released)
            return released

    def transfer_collateral(self, caller: str, from_position_id: int, to_position_id: int,
                            asset: str, amount: int) -> None:
        """
        Move collateral between two of the caller's positions.

        The withdrawal side is checked exactly like withdraw_collateral and the
        deposit side exactly like supply_collateral. No tokens leave the protocol.
        """
        with self._operation("transfer_collateral", caller):
            self._require_amount(amount, "transfer")
            if from_position_id == to_position_id:
                raise ValidationError(
                    "source and destination positions must differ",
                    position_id=from_position_id,
                )
            source = self.positions.require_active(caller, from_position_id)
            dest = self.positions.require_active(caller, to_position_id)
            self._debit_collateral(source, asset, amount)
            self._credit_collateral(dest, asset, amount)
            self._emit("InterpositionalTransfer", caller, from_position_id=from_position_id,
                       to_position_id=to_position_id, asset=asset, amount=amount)

    def liquidate(self, caller: str, owner: str, position_id: int) -> Dict[str, int]:
        """
        Liquidate an unhealthy position.

        The liquidator pays the debt plus the tier's liquidation fee and receives
        all of the position's collateral.

        Raises:
            InsufficientGovernanceTokens, NotLiquidatable, TransferFailed, OracleError

        Returns:
            asset -> amount received by the liquidator
        """
        with self._operation("liquidate", caller):
            held = self.tokens.get_balance(caller, self.governance_token) \
                if self.tokens.is_registered(caller) else 0
            if held < self.config.liquidator_threshold:
                raise InsufficientGovernanceTokens(
                    f"{caller} holds {held} {self.governance_token}, "
                    f"{self.config.liquidator_threshold} required",
                    caller=caller, balance=held, required=self.config.liquidator_threshold,
                )
            position = self.positions.require_active(owner, position_id)
            self._accrue(position, caller)
            health = self.risk.health_factor(position, position.debt, self._current_time)
            if health >= WAD:
                raise NotLiquidatable(
                    f"position {owner}#{position_id} has health factor {health}",
                    owner=owner, position_id=position_id, health_factor=health,
                )

            tier = self.risk.position_tier(position)
            debt = position.debt
            fee = debt * self.tier_parameters.liquidation_fee(tier) // WAD
            self._move(debt + fee, self.base_token, caller, self.address, "liquidate")
            released = self._withdraw_everything(position, caller, "liquidate")
            self.totals.total_borrow -= debt
            position.debt = 0
            position.status = PositionStatus.LIQUIDATED
            self._emit("Liquidated", caller, owner=owner, position_id=position_id,
                       debt=debt, fee=fee, tier=tier.name, collateral=released)
            return released

    def flash_loan(self, caller: str, receiver: FlashLoanReceiver, amount: int, params: Any = None) -> int:
        """
        Lend base token for the duration of the receiver's callback.

        Returns:
            The fee collected
        """
        with self._operation("flash_loan", caller):
            self._require_amount(amount, "flash loan")
            before = self.tokens.get_balance(self.address, self.base_token)
            if amount > before:
                raise InsufficientLiquidity(
                    f"protocol holds {before}, {amount} requested",
                    available=before, requested=amount,
                )
            fee = amount * self.config.flash_loan_fee // BPS_SCALE
            self._move(amount, self.base_token, self.address, receiver.address, "flash_loan")

            try:
                ok = receiver.execute_operation(self.base_token, amount, fee, caller, params)
            except Exception as exc:
                raise FlashLoanFailed(
                    f"flash loan receiver {receiver.address} raised {type(exc).__name__}",
                    receiver=receiver.address, reason=type(exc).__name__,
                ) from exc
            if not ok:
                raise FlashLoanFailed(
                    f"flash loan receiver {receiver.address} returned failure",
                    receiver=receiver.address, reason="callback returned False",
                )

            after = self.tokens.get_balance(self.address, self.base_token)
            if after < before + fee:
                raise FlashLoanFailed(
                    f"flash loan repaid {after - before + amount}, {amount + fee} required",
                    receiver=receiver.address, required=before + fee, actual=after,
                )
            self.totals.total_flash_loan_fees += fee
            self._emit("FlashLoan", caller, receiver=receiver.address, amount=amount, fee=fee)
            return fee

    # ========================================================================
    # LENDER OPERATIONS
    # ========================================================================

    def supply_liquidity(self, caller: str, amount: int) -> int:
        """
        Deposit base token into the lending pool; returns LP shares minted.

        Shares are minted 1:1 into an empty pool and pro rata to total protocol
        assets (cash plus outstanding debt) afterwards.
        """
        with self._operation("supply_liquidity", caller):
            self._require_amount(amount, "supply")
            total_shares = self.tokens.outstanding(self.lp_token)
            total_assets = self.market_state().total_assets
            if total_shares == 0 or total_assets == 0:
                shares = amount
            else:
                shares = amount * total_shares // total_assets
            if shares == 0:
                raise ZeroAmount("deposit too small to mint a share", amount=amount)
            self._transfer([
                Move(amount, self.base_token, caller, self.address, "supply_liquidity"),
                Move(shares, self.lp_token, SYSTEM_WALLET, caller, "supply_liquidity"),
            ], "supply_liquidity")
            self.totals.total_supplied_liquidity += amount
            self.liquidity_accrue_time[caller] = self._current_time
            self._emit("SupplyLiquidity", caller, amount=amount, shares=shares)
            return shares

    def withdraw_liquidity(self, caller: str, shares: int) -> int:
        """
        Burn LP shares for their pro-rata value in base token.

        The excess of the value paid over the supplied principal the shares
        represent is booked as supplier interest.

        Returns:
            Base token paid out
        """
        with self._operation("withdraw_liquidity", caller):
            self._require_amount(shares, "withdraw")
            held = self.tokens.get_balance(caller, self.lp_token) if self.tokens.is_registered(caller) else 0
            if held < shares:
                raise InsufficientCollateral(
                    f"{caller} holds {held} shares, {shares} requested",
                    asset=self.lp_token, available=held, requested=shares,
                )
            total_shares = self.tokens.outstanding(self.lp_token)
            market = self.market_state()
            principal = shares * self.totals.total_supplied_liquidity // total_shares
            value = shares * market.total_assets // total_shares
            if value > market.protocol_balance:
                raise InsufficientLiquidity(
                    f"protocol holds {market.protocol_balance}, {value} requested",
                    available=market.protocol_balance, requested=value,
                )
            moves = [Move(shares, self.lp_token, caller, SYSTEM_WALLET, "withdraw_liquidity")]
            if value > 0:
                moves.append(Move(value, self.base_token, self.address, caller, "withdraw_liquidity"))
            self._transfer(moves, "withdraw_liquidity")
            self.totals.total_supplied_liquidity -= principal
            self.totals.total_accrued_supplier_interest += max(0, value - principal)
            if held == shares:
                self.liquidity_accrue_time.pop(caller, None)
            self._emit("WithdrawLiquidity", caller, shares=shares, amount=value, principal=principal)
            return value

    def liquidity_value(self, wallet: str) -> int:
        """Base-token value of a wallet's LP shares."""
        total_shares = self.tokens.outstanding(self.lp_token)
        if total_shares == 0 or not self.tokens.is_registered(wallet):
            return 0
        shares = self.tokens.get_balance(wallet, self.lp_token)
        return shares * self.market_state().total_assets // total_shares

    def claim_reward(self, caller: str) -> int:
        """
        Claim the governance-token reward for sustained liquidity supply.

        Returns:
            Amount distributed (0 when the caller is not yet eligible)
        """
        with self._operation("claim_reward", caller):
            start = self.liquidity_accrue_time.get(caller)
            if self.reward_distributor is None or not is_reward_eligible(
                self.liquidity_value(caller), start, self._current_time, self.config,
            ):
                return 0
            amount = calculate_reward(start, self._current_time, self.config,
                                      self.reward_distributor.max_reward)
            self.liquidity_accrue_time[caller] = self._current_time
            self.reward_distributor.distribute(caller, amount)
            self._emit("RewardClaimed", caller, amount=amount)
            return amount

    # ========================================================================
    # ADMINISTRATIVE OPERATIONS
    # ========================================================================

    @contextmanager
    def _admin(self, name: str, caller: str, role: Role = Role.MANAGER) -> Iterator[None]:
        with self._operation(name, caller, halt_check=False):
            self.access.require_role(role, caller)
            yield
            logger.info("Administrative change",
                        extra={"event": f"protocol.{name}", "caller": caller})

    def pause(self, caller: str) -> None:
        with self._admin("pause", caller, Role.PAUSER):
            self.paused = True
            self._emit("Paused", caller)

    def unpause(self, caller: str) -> None:
        with self._admin("unpause", caller, Role.PAUSER):
            self.paused = False
            self._emit("Unpaused", caller)

    def add_asset(self, caller: str, asset: Asset) -> None:
        with self._admin("add_asset", caller):
            if asset.symbol in (self.base_token, self.lp_token):
                raise InvalidConfiguration(
                    f"{asset.symbol} is the protocol's own lending token and cannot be collateral",
                    asset=asset.symbol,
                )
            self.registry.add_asset(asset)
            self._emit("AssetAdded", caller, asset=asset.symbol, tier=asset.tier.name)

    def update_asset(self, caller: str, symbol: str, **changes: Any) -> Asset:
        with self._admin("update_asset", caller):
            updated = self.registry.update_asset(symbol, **changes)
            self._emit("AssetUpdated", caller, asset=symbol, changes=changes)
            return updated

    def set_asset_active(self, caller: str, symbol: str, active: bool) -> None:
        with self._admin("set_asset_active", caller):
            self.registry.set_active(symbol, active)
            self._emit("AssetActivation", caller, asset=symbol, active=active)

    def add_oracle_source(self, caller: str, symbol: str, source: OracleSource, primary: bool = False) -> None:
        with self._admin("add_oracle_source", caller):
            self.registry.add_oracle_source(symbol, source, primary=primary)
            self._emit("OracleSourceAdded", caller, asset=symbol, source_id=source.source_id,
                       oracle_type=source.oracle_type.value, primary=primary)

    def set_oracle_source_active(self, caller: str, symbol: str, source_id: str, active: bool) -> None:
        with self._admin("set_oracle_source_active", caller):
            self.registry.set_oracle_source_active(symbol, source_id, active)
            self._emit("OracleSourceActivation", caller, asset=symbol, source_id=source_id, active=active)

    def set_primary_oracle(self, caller: str, symbol: str, source_id: str) -> None:
        with self._admin("set_primary_oracle", caller):
            self.registry.set_primary_oracle(symbol, source_id)
            self._emit("PrimaryOracleSet", caller, asset=symbol, source_id=source_id)

    def update_oracle_config(self, caller: str, **changes: Any) -> GlobalOracleConfig:
        with self._admin("update_oracle_config", caller):
            self.oracle.config = self.oracle.config.with_updates(**changes)
            self._emit("OracleConfigUpdated", caller, changes=changes)
            return self.oracle.config

    def update_protocol_config(self, caller: str, **changes: Any) -> ProtocolConfig:
        with self._admin("update_protocol_config", caller):
            self.config = self.config.with_updates(**changes)
            self._emit("ProtocolConfigUpdated", caller, changes=changes, version=self.config.version)
            return self.config

    def update_tier_parameters(self, caller: str, tier: AssetTier, jump_rate: int, liquidation_fee: int) -> None:
        with self._admin("update_tier_parameters", caller):
            self.tier_parameters = self.tier_parameters.with_tier(tier, jump_rate, liquidation_fee)
            self._emit("TierParametersUpdated", caller, tier=tier.name,
                       jump_rate=jump_rate, liquidation_fee=liquidation_fee)

    def trigger_circuit_breaker(self, caller: str, symbol: str) -> None:
        with self._admin("trigger_circuit_breaker", caller):
            self.oracle.trigger_circuit_breaker(symbol)
            self._emit("CircuitBreakerTriggered", caller, asset=symbol)

    def reset_circuit_breaker(self, caller: str, symbol: str) -> None:
        with self._admin("reset_circuit_breaker", caller):
            self.oracle.reset_circuit_breaker(symbol)
            self._emit("CircuitBreakerReset", caller, asset=symbol)

    def clear_price_baseline(self, caller: str, symbol: str) -> None:
        with self._admin("clear_price_baseline", caller):
            self.oracle.clear_price_baseline(symbol)
            self._emit("PriceBaselineCleared", caller, asset=symbol)

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def oracle_config(self) -> GlobalOracleConfig:
        return self.oracle.config

    def get_position(self, owner: str, position_id: int) -> Position:
        """Copy of a position; mutating it does not affect the ledger."""
        return copy.deepcopy(self.positions.get(owner, position_id))

    def list_positions(self, owner: str) -> List[Position]:
        return copy.deepcopy(self.positions.list_positions(owner))

    def get_asset_price(self, symbol: str) -> int:
        return self.oracle.get_asset_price(symbol, self._current_time)

    def oracle_health(self, symbol: str) -> Dict[str, Any]:
        return self.oracle.oracle_health(symbol, self._current_time)

    def collateral_value(self, owner: str, position_id: int) -> int:
        position = self.positions.get(owner, position_id)
        return self.risk.collateral_value(position.collateral, self._current_time)

    def credit_limit(self, owner: str, position_id: int) -> int:
        position = self.positions.get(owner, position_id)
        return self.risk.credit_limit(position.collateral, self._current_time)

    def debt_with_interest(self, owner: str, position_id: int) -> int:
        return self._owed(self.positions.get(owner, position_id))

    def health_factor(self, owner: str, position_id: int) -> int:
        position = self.positions.get(owner, position_id)
        return self.risk.health_factor(position, self._owed(position), self._current_time)

    def is_liquidatable(self, owner: str, position_id: int) -> bool:
        position = self.positions.get(owner, position_id)
        if not position.is_active:
            return False
        return self.health_factor(owner, position_id) < WAD

    def position_tier(self, owner: str, position_id: int) -> AssetTier:
        return self.risk.position_tier(self.positions.get(owner, position_id))

    def position_summary(self, owner: str, position_id: int) -> PositionSummary:
        return self.risk.summarize(self.positions.get(owner, position_id), self.market_state(),
                                   self.config, self.tier_parameters, self._current_time)

    def utilization(self) -> int:
        return calculate_utilization(self.totals.total_borrow, self.totals.total_supplied_liquidity)

    def supply_rate(self) -> int:
        return calculate_supply_rate(self.market_state(), self.config.profit_target_rate)

    def borrow_rate(self, tier: AssetTier) -> int:
        return calculate_borrow_rate(tier, self.market_state(), self.config, self.tier_parameters)

    def verify_invariants(self, check_solvency: bool = False) -> Dict[str, Any]:
        """
        Check the ledger-wide invariants.

        - total_borrow equals the sum of ACTIVE position debts
        - per asset, TVL equals the sum of position balances and is held by
          the protocol wallet
        - isolated positions hold only their bound asset; cross positions hold
          no ISOLATED-tier asset
        - token balances are double-entry consistent
        - with check_solvency, every ACTIVE position's debt is within its
          credit limit (reads oracle prices)

        Returns:
            Dict with 'valid' and 'violations' (one dict per failed check)
        """
        violations: List[Dict[str, Any]] = []
        all_positions = self.positions.all_positions()
        active = [p for p in all_positions if p.is_active]

        sum_debt = sum(p.debt for p in active)
        if sum_debt != self.totals.total_borrow:
            violations.append({'invariant': 'total_borrow', 'expected': sum_debt,
                               'actual': self.totals.total_borrow})

        for symbol in self.registry.list_assets():
            held = sum(p.collateral_amount(symbol) for p in all_positions)
            tvl = self.registry.get_tvl(symbol)
            if held != tvl:
                violations.append({'invariant': 'tvl', 'asset': symbol, 'expected': held, 'actual': tvl})
            if symbol in self.tokens.tokens and self.tokens.get_balance(self.address, symbol) < tvl:
                violations.append({'invariant': 'custody', 'asset': symbol, 'tvl': tvl,
                                   'balance': self.tokens.get_balance(self.address, symbol)})

        for p in all_positions:
            assets = p.collateral_assets()
            if p.isolated and any(a != p.isolated_asset for a in assets):
                violations.append({'invariant': 'isolation', 'owner': p.owner,
                                   'position_id': p.position_id, 'assets': assets})
            if not p.isolated and any(self.registry.get(a).tier == AssetTier.ISOLATED for a in assets):
                violations.append({'invariant': 'isolation', 'owner': p.owner,
                                   'position_id': p.position_id, 'assets': assets})

        if check_solvency:
            for p in active:
                if p.debt == 0:
                    continue
                limit = self.risk.credit_limit(p.collateral, self._current_time)
                if p.debt > limit:
                    violations.append({'invariant': 'solvency', 'owner': p.owner,
                                       'position_id': p.position_id, 'debt': p.debt,
                                       'credit_limit': limit})

        tokens = self.tokens.verify_double_entry()
        violations.extend({'invariant': 'double_entry', **d} for d in tokens['discrepancies'])

        return {
            'valid': len(violations) == 0,
            'total_borrow': self.totals.total_borrow,
            'sum_debt': sum_debt,
            'violations': violations,
        }
