"""
tokens.py - Double-Entry Token Ledger

The value-transfer primitive behind the lending protocol. Collateral assets,
the base token, the governance token and LP shares are all tokens held in
wallets here; the protocol itself is just another wallet.

Key responsibilities:
    - Executes transfer batches atomically (all moves succeed or none do)
    - Rejects any batch that would leave a wallet below zero
    - Issues and redeems tokens through SYSTEM_WALLET, the only wallet
      allowed to go negative, so every token's balances always sum to zero
    - Keeps an audit log of every applied batch
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from .core import SYSTEM_WALLET

logger = logging.getLogger(__name__)


class ExecuteResult(Enum):
    """
    Outcome of a batch execution attempt.

    APPLIED: Batch was validated and applied.
    REJECTED: Batch failed validation; nothing changed.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class TokenError(Exception):
    """Base exception for token-ledger misuse."""
    pass


class TokenNotRegistered(TokenError):
    """Raised when referring to a token that has not been registered."""
    pass


class WalletNotRegistered(TokenError):
    """Raised when referring to a wallet that has not been registered."""
    pass


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Token:
    """
    A fungible token.

    Attributes:
        symbol: Unique identifier, also used as the asset symbol in the registry
        name: Human-readable name
        decimals: Precision of the smallest unit
    """
    symbol: str
    name: str
    decimals: int

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Token symbol cannot be empty")
        if not 0 <= self.decimals <= 36:
            raise ValueError(f"Token decimals out of range: {self.decimals}")


@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of a token between two wallets.

    Attributes:
        quantity: Amount in smallest units (positive)
        token: Token symbol
        source: Wallet debited
        dest: Wallet credited
        contract_id: Identifier of the operation generating this move
    """
    quantity: int
    token: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.token or not self.token.strip():
            raise ValueError("Move token cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, int) or isinstance(self.quantity, bool):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.token}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class Transfer:
    """An applied batch, as recorded in the audit log."""
    moves: Tuple[Move, ...]
    memo: str
    sequence_number: int

    def __repr__(self) -> str:
        w = 80
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w - 3] + "..."
            return text + " " * (w - len(text))

        lines = [f"┌{bar}┐", f"│{pad(f' TRANSFER #{self.sequence_number} {self.memo}')}│", f"├{bar}┤"]
        for move in self.moves:
            lines.append(f"│{pad(f'   {move.source} → {move.dest}: {move.quantity} {move.token}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# ============================================================================
# LEDGER
# ============================================================================

class TokenLedger:
    """
    Double-entry token ledger with full validation and audit trail.

    Example:
        tokens = TokenLedger("main")
        tokens.register_token(Token("USDC", "USD Coin", 6))
        tokens.register_wallet("alice")
        tokens.issue("alice", "USDC", 1_000 * 10**6)
        tokens.transfer("alice", "bob", "USDC", 250 * 10**6)
    """

    def __init__(self, name: str, verbose: bool = False):
        self.name = name
        self.tokens: Dict[str, Token] = {}
        self.registered_wallets: Set[str] = set()
        self.balances: Dict[str, Dict[str, int]] = {}
        self.transfer_log: List[Transfer] = []
        self.verbose = verbose
        self.last_rejection: Optional[str] = None
        self._next_sequence = 0

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get_balance(self, wallet_id: str, token: str) -> int:
        """
        Raises:
            WalletNotRegistered: If wallet is unknown
            TokenNotRegistered: If token is unknown
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if token not in self.tokens:
            raise TokenNotRegistered(f"Token {token} not registered")
        return self.balances[wallet_id].get(token, 0)

    def get_token(self, symbol: str) -> Token:
        if symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {symbol} not registered")
        return self.tokens[symbol]

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def total_supply(self, token: str) -> int:
        """
        Sum of all balances of a token, SYSTEM_WALLET included (always 0).

        Wallets are sorted before summation for a deterministic order.
        """
        if token not in self.tokens:
            raise TokenNotRegistered(f"Token {token} not registered")
        return sum(self.balances[w].get(token, 0) for w in sorted(self.registered_wallets))

    def outstanding(self, token: str) -> int:
        """Amount issued and not yet redeemed (held outside SYSTEM_WALLET)."""
        return -self.get_balance(SYSTEM_WALLET, token)

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Verify that every token's balances sum to zero and no wallet other
        than SYSTEM_WALLET is negative.

        Returns:
            Dict with 'valid', 'outstanding' (per token) and 'discrepancies'
        """
        discrepancies = []
        outstanding = {}
        for token in self.tokens:
            supply = self.total_supply(token)
            outstanding[token] = self.outstanding(token)
            if supply != 0:
                discrepancies.append({'token': token, 'error': 'non-zero sum', 'actual': supply})
            for wallet in sorted(self.registered_wallets):
                if wallet != SYSTEM_WALLET and self.balances[wallet].get(token, 0) < 0:
                    discrepancies.append({
                        'token': token, 'wallet': wallet,
                        'error': 'negative balance', 'actual': self.balances[wallet][token],
                    })
        return {
            'valid': len(discrepancies) == 0,
            'outstanding': outstanding,
            'discrepancies': discrepancies,
        }

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------

    def register_wallet(self, wallet_id: str) -> str:
        if not wallet_id or not wallet_id.strip():
            raise ValueError("Wallet id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def register_token(self, token: Token) -> None:
        if token.symbol in self.tokens:
            raise ValueError(f"Token {token.symbol} already registered")
        self.tokens[token.symbol] = token

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    def execute(self, moves: Sequence[Move], memo: str = "") -> ExecuteResult:
        """
        Apply a batch of moves atomically.

        Returns:
            ExecuteResult.APPLIED if every move was applied
            ExecuteResult.REJECTED if validation failed (reason in last_rejection)
        """
        moves = tuple(moves)
        if not moves:
            return ExecuteResult.APPLIED

        valid, reason = self._validate_batch(moves)
        if not valid:
            self.last_rejection = reason
            logger.warning(
                "Transfer batch rejected",
                extra={"event": "tokens.rejected", "memo": memo, "reason": reason},
            )
            if self.verbose:
                print(f"✗ REJECTED: {memo}: {reason}")
            return ExecuteResult.REJECTED

        self._execute_moves(moves)
        record = Transfer(moves=moves, memo=memo, sequence_number=self._next_sequence)
        self._next_sequence += 1
        self.transfer_log.append(record)
        self.last_rejection = None
        if self.verbose:
            print(repr(record))
        return ExecuteResult.APPLIED

    def transfer(self, source: str, dest: str, token: str, quantity: int,
                 contract_id: str = "transfer") -> ExecuteResult:
        """Single-move convenience wrapper around execute()."""
        return self.execute([Move(quantity, token, source, dest, contract_id)], memo=contract_id)

    def issue(self, wallet_id: str, token: str, quantity: int) -> ExecuteResult:
        """Mint tokens into a wallet from SYSTEM_WALLET."""
        return self.execute([Move(quantity, token, SYSTEM_WALLET, wallet_id, "issue")], memo="issue")

    def redeem(self, wallet_id: str, token: str, quantity: int) -> ExecuteResult:
        """Burn tokens from a wallet back into SYSTEM_WALLET."""
        return self.execute([Move(quantity, token, wallet_id, SYSTEM_WALLET, "redeem")], memo="redeem")

    def _validate_batch(self, moves: Tuple[Move, ...]) -> Tuple[bool, str]:
        for move in moves:
            if move.token not in self.tokens:
                return False, f"token not registered: {move.token}"
            if move.source not in self.registered_wallets:
                return False, f"wallet not registered: {move.source}"
            if move.dest not in self.registered_wallets:
                return False, f"wallet not registered: {move.dest}"

        net: Dict[Tuple[str, str], int] = defaultdict(int)
        for move in moves:
            net[(move.source, move.token)] -= move.quantity
            net[(move.dest, move.token)] += move.quantity

        # SYSTEM_WALLET is exempt: it carries the negative of everything issued.
        for (wallet, token), delta in sorted(net.items()):
            if wallet == SYSTEM_WALLET:
                continue
            proposed = self.balances[wallet].get(token, 0) + delta
            if proposed < 0:
                return False, f"{wallet} {token}: {proposed} < 0"
        return True, ""

    def _execute_moves(self, moves: Tuple[Move, ...]) -> None:
        for move in moves:
            self.balances[move.source][move.token] -= move.quantity
            self.balances[move.dest][move.token] += move.quantity

    # ------------------------------------------------------------------
    # copies
    # ------------------------------------------------------------------

    def clone(self) -> TokenLedger:
        """
        Deep copy of this ledger; balances and log are fully independent.
        """
        cloned = TokenLedger.__new__(TokenLedger)
        cloned.name = self.name
        cloned.verbose = self.verbose
        cloned.tokens = dict(self.tokens)
        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.transfer_log = list(self.transfer_log)
        cloned.last_rejection = self.last_rejection
        cloned._next_sequence = self._next_sequence
        cloned.balances = {}
        for wallet, bals in self.balances.items():
            cloned.balances[wallet] = defaultdict(int, bals)
        return cloned

    def restore_from(self, other: TokenLedger) -> None:
        """Overwrite this ledger's state with a clone taken earlier."""
        self.tokens = dict(other.tokens)
        self.registered_wallets = other.registered_wallets.copy()
        self.transfer_log = list(other.transfer_log)
        self.last_rejection = other.last_rejection
        self._next_sequence = other._next_sequence
        self.balances = {w: defaultdict(int, bals) for w, bals in other.balances.items()}
