"""Line labels produced by the receipt line classifier."""

from enum import StrEnum


class LineLabel(StrEnum):
    """Semantic role of a receipt line."""

    OTHER = "other"
    MERCHANT = "merchant"
    DATE = "date"
    TOTAL = "total"
    ITEM = "item"


# Index-aligned with the model's output channels.
LABELS: tuple[LineLabel, ...] = (
    LineLabel.OTHER,
    LineLabel.MERCHANT,
    LineLabel.DATE,
    LineLabel.TOTAL,
    LineLabel.ITEM,
)

NUM_LABELS = len(LABELS)
