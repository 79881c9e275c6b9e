"""
Trade Log

Trades come from an opaque extractor (a vision/OCR capability) or from
user input. They are validated into TradeCandidate models, written to the
mirror's transactions table and folded into the holdings ledger with a
moving-average cost basis.
"""

import re
from abc import ABC, abstractmethod
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional
from uuid import uuid4

from pydantic import ValidationError

from sheet_ledger.audit.logger import get_logger
from sheet_ledger.models.records import HoldingRecord, TradeCandidate, TradeType
from sheet_ledger.services.storage.interface import MirrorStoreInterface

logger = get_logger(__name__)

TRANSACTIONS_TABLE = "transactions"

_DOMESTIC_TICKER = re.compile(r"^\d{6}$")
_CENTS = Decimal("0.01")


class TradeExtractor(ABC):
    """Opaque capability turning a brokerage screenshot into trade candidates."""

    @abstractmethod
    async def extract_trade_candidates(self, image: bytes) -> list[TradeCandidate]:
        pass


def is_domestic_ticker(ticker: str) -> bool:
    """Korean listings use 6-digit numeric codes and trade in KRW."""
    return bool(_DOMESTIC_TICKER.match(ticker.strip()))


def normalize_extracted_trades(items: list[dict[str, Any]], today: date) -> list[TradeCandidate]:
    """
    Validate raw extractor output.

    A missing date defaults to `today`, anything other than "SELL" is a
    buy, and entries without a ticker or with a non-positive price or
    quantity are dropped.
    """
    candidates = []
    for item in items:
        try:
            candidates.append(TradeCandidate(
                date=item.get("date") or today,
                ticker=str(item.get("ticker") or ""),
                name=str(item.get("name") or ""),
                price=Decimal(str(item.get("price") or 0)),
                quantity=Decimal(str(item.get("quantity") or 0)),
                type=TradeType.SELL if item.get("type") == "SELL" else TradeType.BUY,
            ))
        except (ValidationError, ArithmeticError) as e:
            logger.info("trade_candidate_dropped", item=item, error=str(e))
    return candidates


def calculate_new_avg_price(
    current_qty: Decimal,
    current_avg_price: Decimal,
    trade_qty: Decimal,
    trade_price: Decimal,
    trade_type: TradeType,
) -> tuple[Decimal, Decimal]:
    """
    Moving-average cost basis after one trade.

    BUY blends the cost: (q * avg + tq * tp) / (q + tq), rounded to two
    decimals. SELL keeps the average and floors the quantity at zero.

    Returns:
        (new quantity, new average price)
    """
    if trade_type is TradeType.BUY:
        new_qty = current_qty + trade_qty
        if new_qty <= 0:
            return new_qty, Decimal("0")
        total_cost = current_qty * current_avg_price + trade_qty * trade_price
        return new_qty, (total_cost / new_qty).quantize(_CENTS, rounding=ROUND_HALF_UP)

    return max(Decimal("0"), current_qty - trade_qty), current_avg_price


def apply_trade(holding: Optional[HoldingRecord], trade: TradeCandidate) -> Optional[HoldingRecord]:
    """
    The holding after `trade`, or None when there is nothing to record
    (a sell of a ticker that is not held).
    """
    domestic = is_domestic_ticker(trade.ticker)

    if holding is None:
        if trade.type is TradeType.SELL:
            return None
        return HoldingRecord(
            ticker=trade.ticker,
            name=trade.name or trade.ticker,
            quantity=trade.quantity,
            avg_price_krw=trade.price if domestic else Decimal("0"),
            avg_price_usd=Decimal("0") if domestic else trade.price,
        )

    field = "avg_price_krw" if domestic else "avg_price_usd"
    new_qty, new_avg = calculate_new_avg_price(
        holding.quantity,
        getattr(holding, field),
        trade.quantity,
        trade.price,
        trade.type,
    )
    return holding.model_copy(update={"quantity": new_qty, field: new_avg})


class TradeLog:
    """Trade history kept in the mirror only."""

    def __init__(self, mirror: MirrorStoreInterface, owner_id: str = "local"):
        self._mirror = mirror
        self._owner_id = owner_id

    async def record(self, trades: list[TradeCandidate], sheet_synced: bool = True) -> int:
        """
        Insert trades into the transactions table.

        Raises:
            ValueError: If `trades` is empty
        """
        if not trades:
            raise ValueError("No trades to save")

        rows = [
            {
                "id": str(uuid4()),
                "user_id": self._owner_id,
                "ticker": trade.ticker,
                "name": trade.name or None,
                "type": trade.type.value,
                "price": float(trade.price),
                "quantity": float(trade.quantity),
                "total_amount": float(trade.total_amount),
                "trade_date": trade.date.isoformat(),
                "sheet_synced": sheet_synced,
            }
            for trade in trades
        ]
        written = await self._mirror.upsert(TRANSACTIONS_TABLE, rows, conflict_key=("id",))
        logger.info("trades_recorded", count=written)
        return written

    async def list_trades(self, ticker: Optional[str] = None) -> list[dict[str, Any]]:
        filters: dict[str, Any] = {"user_id": self._owner_id}
        if ticker:
            filters["ticker"] = ticker.upper()
        rows = await self._mirror.select(TRANSACTIONS_TABLE, filters)
        return sorted(rows, key=lambda row: row.get("trade_date") or "", reverse=True)
