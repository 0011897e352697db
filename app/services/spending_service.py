import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Expense
from app.utils.datetime_utils import month_bounds


class SpendingService:
    """Read-only aggregation over expenses, in the user's base currency"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get_current_month_spending(
        self, user_id: uuid.UUID, currency: str, now: Optional[datetime] = None
    ) -> float:
        """
        Sum of this month's expenses converted to ``currency``.

        Expenses recorded directly in ``currency`` count even when no converted
        amount was stored for them.
        """
        start, end = month_bounds(now)
        base_currency = func.coalesce(Expense.base_currency, Expense.currency)
        total = await self.db.scalar(
            select(func.coalesce(func.sum(func.coalesce(Expense.amount_base, Expense.amount)), 0.0))
            .where(
                and_(
                    Expense.user_id == user_id,
                    base_currency == currency,
                    Expense.date >= start,
                    Expense.date < end,
                )
            )
        )
        return float(total or 0.0)
