"""
============================================================================
Veritas Protocol v1.0.0
Flow Categorizer - Exchange vs Peer Transfer Classification
============================================================================

Reliability Level: L5 High
Input Constraints: ChainTransaction records with from/to addresses
Side Effects: Reads optional address book file from environment

Transfers are categorized against a static list of known exchange-custodied
addresses:
    - to a known exchange address       -> exchange deposit
    - from a known exchange address     -> exchange withdrawal
    - neither side a known exchange     -> peer / cold-wallet transfer

Exchange-to-exchange transfers count as deposits (funds arriving at an
exchange). Address comparison is case-insensitive for hex addresses.

ENVIRONMENT VARIABLES:
    - VERITAS_EXCHANGE_ADDRESSES_FILE: JSON object {address: exchange_name}
      merged over the built-in list
============================================================================
"""

import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Optional

from data_ingestion.schemas import ChainTransaction, OnChainFlowSummary

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Known Exchange Addresses
# =============================================================================

# Publicly labelled hot/cold wallets (lower-cased where hex)
KNOWN_EXCHANGE_ADDRESSES: Dict[str, str] = {
    # Ethereum
    "0x28c6c06298d514db089934071355e5743bf21d60": "binance",
    "0x21a31ee1afc51d94c2efccaa2092ad1028285549": "binance",
    "0xdfd5293d8e347dfe59e90efd55b2956a1343963d": "binance",
    "0x71660c4005ba85c37ccec55d0c4493e66fe775d3": "coinbase",
    "0x503828976d22510aad0201ac7ec88293211d23da": "coinbase",
    "0x2910543af39aba0cd09dbb2d50200b3e800a63d2": "kraken",
    # Bitcoin
    "34xp4vrocgjym3xr7ycvpfhocnxv4twseo": "binance",
    "bc1qgdjqv0av3q56jvd82tkdjpy7gdp9ut8tlqmgrpmv24sq90ecnvqqjwvw97": "bitfinex",
}

ENV_EXCHANGE_ADDRESSES_FILE = "VERITAS_EXCHANGE_ADDRESSES_FILE"


class FlowCategory(Enum):
    """Transfer categories used for market-to-chain reconciliation."""
    EXCHANGE_DEPOSIT = "exchange_deposit"
    EXCHANGE_WITHDRAWAL = "exchange_withdrawal"
    PEER_TRANSFER = "peer_transfer"


@dataclass(frozen=True)
class CategorizedFlows:
    """Notional totals per category."""
    exchange_deposits: Decimal
    exchange_withdrawals: Decimal
    peer_transfers: Decimal
    transaction_count: int


class FlowCategorizer:
    """
    Classifies transfers against a known exchange address book.

    Reliability Level: L5 High
    Input Constraints: None
    Side Effects: None after construction
    """

    def __init__(self, exchange_addresses: Optional[Dict[str, str]] = None) -> None:
        source = KNOWN_EXCHANGE_ADDRESSES if exchange_addresses is None else exchange_addresses
        self._addresses = {addr.lower(): name for addr, name in source.items()}

    def exchange_for(self, address: str) -> Optional[str]:
        """Return the exchange name for an address, or None if unknown."""
        if not address:
            return None
        return self._addresses.get(address.lower())

    def categorize(self, tx: ChainTransaction) -> FlowCategory:
        if self.exchange_for(tx.to_address) is not None:
            return FlowCategory.EXCHANGE_DEPOSIT
        if self.exchange_for(tx.from_address) is not None:
            return FlowCategory.EXCHANGE_WITHDRAWAL
        return FlowCategory.PEER_TRANSFER

    def summarize(self, transactions: Iterable[ChainTransaction]) -> CategorizedFlows:
        totals = {category: Decimal("0") for category in FlowCategory}
        count = 0
        for tx in transactions:
            totals[self.categorize(tx)] += tx.value_usd
            count += 1
        return CategorizedFlows(
            exchange_deposits=totals[FlowCategory.EXCHANGE_DEPOSIT],
            exchange_withdrawals=totals[FlowCategory.EXCHANGE_WITHDRAWAL],
            peer_transfers=totals[FlowCategory.PEER_TRANSFER],
            transaction_count=count,
        )

    def resolve_flows(self, summary: OnChainFlowSummary) -> CategorizedFlows:
        """
        Flow totals for a summary.

        Supplied totals win; raw transactions are only categorized when the
        collector sent none.
        """
        if summary.total_flow > Decimal("0") or not summary.transactions:
            return CategorizedFlows(
                exchange_deposits=summary.exchange_deposits,
                exchange_withdrawals=summary.exchange_withdrawals,
                peer_transfers=summary.peer_transfers,
                transaction_count=len(summary.transactions),
            )
        return self.summarize(summary.transactions)


def load_exchange_addresses() -> Dict[str, str]:
    """
    Built-in address book merged with the optional JSON file.

    Side Effects: Reads VERITAS_EXCHANGE_ADDRESSES_FILE if set
    """
    addresses = dict(KNOWN_EXCHANGE_ADDRESSES)
    path = os.getenv(ENV_EXCHANGE_ADDRESSES_FILE)
    if not path:
        return addresses

    try:
        with open(path, "r", encoding="utf-8") as handle:
            extra = json.load(handle)
    except (OSError, ValueError) as e:
        logger.warning(
            f"[FLOW-CATEGORIZER] Could not load address book: {str(e)} | path={path}"
        )
        return addresses

    if not isinstance(extra, dict):
        logger.warning(
            f"[FLOW-CATEGORIZER] Address book must be a JSON object | path={path}"
        )
        return addresses

    for address, name in extra.items():
        addresses[str(address).lower()] = str(name)
    logger.info(
        f"[FLOW-CATEGORIZER] Loaded {len(extra)} extra exchange addresses | path={path}"
    )
    return addresses
