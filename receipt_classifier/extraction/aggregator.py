"""Rule-based aggregation of classified lines into a receipt.

Picks the merchant, date and total from the first suitably labeled line
(with narrow regex fallbacks) and groups ``item`` lines into priced items.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Sequence

from receipt_classifier.classification.engine import ClassifiedLine
from receipt_classifier.classification.labels import LineLabel
from receipt_classifier.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_STORE_MARKERS: tuple[str, ...] = ("STOP & SHOP",)
UNKNOWN_ITEM_NAME = "Unknown Item"

_PRICE_PATTERN = re.compile(r"\$?(\d+\.\d{2})")
_DATE_TIME_PATTERN = re.compile(r"\d{2}/\d{2}/\d{2}.*\d{2}:\d{2}.*")
_TOTAL_MARKERS: tuple[str, ...] = ("BALANCE", "$")


@dataclass
class Item:
    """A purchased line item."""

    name: str
    price: Decimal
    quantity: int = 1


@dataclass
class Receipt:
    """Structured fields extracted from one receipt."""

    merchant: str = ""
    date: str = ""
    total: Decimal = Decimal("0")
    items: list[Item] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-compatible data with decimals rendered as strings."""
        return {
            "merchant": self.merchant,
            "date": self.date,
            "total": str(self.total),
            "items": [
                {"name": i.name, "price": str(i.price), "quantity": i.quantity}
                for i in self.items
            ],
        }


def find_price(text: str) -> re.Match[str] | None:
    """Return the first currency-like amount in ``text``, if any."""
    return _PRICE_PATTERN.search(text)


class LineAggregator:
    """Builds a ``Receipt`` from labeled receipt lines.

    Args:
        store_markers: Substrings identifying a merchant line when no line
            is labeled ``merchant``.
    """

    def __init__(self, store_markers: Sequence[str] = DEFAULT_STORE_MARKERS) -> None:
        self.store_markers = tuple(store_markers)

    def format_receipt(self, lines: Sequence[ClassifiedLine]) -> Receipt:
        """Aggregate classified lines into a receipt.

        Fields without a matching line keep their empty defaults.

        Args:
            lines: Classified lines in document order.

        Returns:
            The extracted receipt.
        """
        receipt = Receipt(
            merchant=self._extract_merchant(lines),
            date=self._extract_date(lines),
            total=self._extract_total(lines),
            items=self._extract_items(lines),
        )
        logger.info(
            "Aggregated %d lines: merchant=%r date=%r total=%s items=%d",
            len(lines),
            receipt.merchant,
            receipt.date,
            receipt.total,
            len(receipt.items),
        )
        return receipt

    def _extract_merchant(self, lines: Sequence[ClassifiedLine]) -> str:
        line = _first_labeled(lines, LineLabel.MERCHANT)
        if line is None:
            line = next(
                (
                    cl
                    for cl in lines
                    if any(marker in cl.text for marker in self.store_markers)
                ),
                None,
            )
        if line is None:
            return ""
        # Address usually follows the store name after a dash.
        return line.text.split("-", 1)[0].strip()

    def _extract_date(self, lines: Sequence[ClassifiedLine]) -> str:
        line = _first_labeled(lines, LineLabel.DATE)
        if line is not None:
            match = _DATE_TIME_PATTERN.search(line.text)
            return match.group(0) if match else line.text.strip()

        for cl in lines:
            match = _DATE_TIME_PATTERN.search(cl.text)
            if match:
                return match.group(0)
        return ""

    def _extract_total(self, lines: Sequence[ClassifiedLine]) -> Decimal:
        line = _first_labeled(lines, LineLabel.TOTAL)
        if line is None:
            line = next(
                (
                    cl
                    for cl in lines
                    if any(marker in cl.text for marker in _TOTAL_MARKERS)
                ),
                None,
            )
        if line is None:
            return Decimal("0")

        match = find_price(line.text)
        return Decimal(match.group(1)) if match else Decimal("0")

    def _extract_items(self, lines: Sequence[ClassifiedLine]) -> list[Item]:
        items: list[Item] = []
        pending_name = ""

        for cl in lines:
            if cl.label != LineLabel.ITEM:
                continue

            match = find_price(cl.text)
            if match is None:
                if not pending_name:
                    pending_name = cl.text.strip()
                continue

            name = pending_name or _strip_price(cl.text, match) or UNKNOWN_ITEM_NAME
            items.append(Item(name=name, price=Decimal(match.group(1))))
            pending_name = ""

        if pending_name:
            logger.debug("Dropping unpriced item %r", pending_name)
        return items


def _first_labeled(
    lines: Sequence[ClassifiedLine], label: LineLabel
) -> ClassifiedLine | None:
    return next((cl for cl in lines if cl.label == label), None)


def _strip_price(text: str, match: re.Match[str]) -> str:
    return (text[: match.start()] + text[match.end() :]).strip()
