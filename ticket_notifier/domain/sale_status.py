from datetime import datetime
from enum import Enum
from typing import Optional

from ticket_notifier.utils.datetime_utils import ensure_aware


class SaleStatus(str, Enum):
    BEFORE_SALE = "before_sale"
    ON_SALE = "on_sale"
    ENDED = "ended"


def determine_sale_status(
    sale_start_date: Optional[datetime],
    sale_end_date: Optional[datetime],
    observed_at: datetime,
) -> SaleStatus:
    """
    Derive the sale status from the sale window as seen at `observed_at`.

    An end date already passed wins over everything else; an unknown start
    date is treated as "already on sale".
    """
    ensure_aware(observed_at, "observed_at")
    if sale_end_date is not None and observed_at > ensure_aware(
        sale_end_date, "sale_end_date"
    ):
        return SaleStatus.ENDED

    if sale_start_date is not None and observed_at < ensure_aware(
        sale_start_date, "sale_start_date"
    ):
        return SaleStatus.BEFORE_SALE

    return SaleStatus.ON_SALE
