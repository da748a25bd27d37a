from enum import Enum
from typing import Optional

from core.config import settings


class StockStatus(str, Enum):
    OK = "OK"
    LOW = "LOW"


def resolve_threshold(override: Optional[int], default: Optional[int] = None) -> int:
    """Item override wins; otherwise the process-wide LOW_STOCK_THRESHOLD."""
    if override is not None:
        return int(override)
    return int(settings.low_stock_threshold if default is None else default)


def evaluate(quantity: int, threshold: int) -> StockStatus:
    # At-or-below counts as low, matching the low-stock report
    return StockStatus.LOW if int(quantity) <= int(threshold) else StockStatus.OK
