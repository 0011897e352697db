import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Depends
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import AlertSeverity, UserBudget
from app.db.session import get_async_session
from app.services.notifications.device_registry import DeviceRegistryService
from app.services.notifications.messages import render
from app.services.notifications.preferences import UserPreferenceCache
from app.services.spending_service import SpendingService
from app.utils.datetime_utils import month_period_key, to_naive_utc, to_utc, utc_now
from app.utils.logging import get_logger

logger = get_logger()

CHANNEL_ID = "budget-alerts"


def evaluate_alert(
    percentage: float,
    alert_threshold: float,
    period: str,
    last_alert_period: Optional[str] = None,
    last_alert_severity: Optional[AlertSeverity] = None,
) -> Optional[AlertSeverity]:
    """
    Severity to alert with, or None.

    Below the threshold nothing is sent. Within one period a critical alert
    silences everything after it, and a warning is sent at most once.
    """
    exceeded = percentage >= 100
    if percentage < alert_threshold * 100 and not exceeded:
        return None

    severity = AlertSeverity.CRITICAL if exceeded else AlertSeverity.WARNING
    if last_alert_period == period and last_alert_severity in (
        AlertSeverity.CRITICAL,
        severity,
    ):
        return None
    return severity


@dataclass
class BudgetAlertResult:
    user_id: uuid.UUID
    percentage: float
    severity: Optional[AlertSeverity] = None
    sent_count: int = 0

    @property
    def alerted(self) -> bool:
        return self.severity is not None


class BudgetAlertService:
    """Monthly budget threshold alerts, at most one per severity per month"""

    def __init__(
        self,
        db_session: AsyncSession,
        devices: Optional[DeviceRegistryService] = None,
        preferences: Optional[UserPreferenceCache] = None,
        spending: Optional[SpendingService] = None,
    ):
        self.db = db_session
        self.devices = devices or DeviceRegistryService(db_session)
        self.preferences = preferences or UserPreferenceCache(db_session)
        self.spending = spending or SpendingService(db_session)

    async def get_budget(self, user_id: uuid.UUID) -> Optional[UserBudget]:
        return await self.db.scalar(
            select(UserBudget).where(UserBudget.user_id == user_id)
        )

    async def _claim_alert_slot(
        self,
        budget: UserBudget,
        period: str,
        severity: AlertSeverity,
        percentage: float,
        now: datetime,
    ) -> bool:
        """
        Stamp the alert state only if the (period, severity) slot is still free.

        The dedup check and the write are one conditional UPDATE, so of two
        concurrent runs only one gets the row.
        """
        slot_free = or_(
            UserBudget.last_alert_period.is_(None),
            UserBudget.last_alert_period != period,
            UserBudget.last_alert_severity.is_(None),
            and_(
                UserBudget.last_alert_severity != AlertSeverity.CRITICAL,
                UserBudget.last_alert_severity != severity,
            ),
        )
        result = await self.db.execute(
            update(UserBudget)
            .where(and_(UserBudget.id == budget.id, slot_free))
            .values(
                last_alert_at=to_naive_utc(now),
                last_alert_severity=severity,
                last_alert_period=period,
                last_alert_percentage=percentage,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return (result.rowcount or 0) == 1

    def _content(
        self,
        budget: UserBudget,
        severity: AlertSeverity,
        spending: float,
        percentage: float,
        language: str,
    ):
        if severity == AlertSeverity.CRITICAL:
            title = render("budget_alert.critical.title", language)
            body = render(
                "budget_alert.critical.body",
                language,
                currency=budget.currency,
                exceeded=abs(budget.amount - spending),
                current=spending,
                budget=budget.amount,
            )
        else:
            title = render("budget_alert.warning.title", language)
            body = render(
                "budget_alert.warning.body",
                language,
                percentage=percentage,
                currency=budget.currency,
                remaining=budget.amount - spending,
            )
        return title, body

    async def check_and_alert(
        self, budget: UserBudget, now: Optional[datetime] = None
    ) -> BudgetAlertResult:
        """Evaluate one budget for the current month and alert if due"""
        current = to_utc(now) if now else utc_now()
        period = month_period_key(current)

        spending = await self.spending.get_current_month_spending(
            budget.user_id, budget.currency, now=current
        )
        percentage = (spending / budget.amount) * 100 if budget.amount > 0 else 0.0
        result = BudgetAlertResult(user_id=budget.user_id, percentage=percentage)

        severity = evaluate_alert(
            percentage,
            budget.alert_threshold,
            period,
            budget.last_alert_period,
            budget.last_alert_severity,
        )
        if severity is None:
            return result

        preferences = await self.preferences.get(budget.user_id)
        if not preferences.notifications_enabled or not preferences.budget_notifications_enabled:
            return result

        if not await self._claim_alert_slot(budget, period, severity, percentage, current):
            logger.info(
                f"Budget alert {severity.value} for user {budget.user_id} already sent in {period}"
            )
            return result

        title, body = self._content(
            budget, severity, spending, percentage, preferences.language
        )
        outcome = await self.devices.send_to_user(
            budget.user_id,
            title,
            body,
            data={
                "type": "budget_alert",
                "screen": "finance",
                "percentage": f"{percentage:.2f}",
                "severity": severity.value,
            },
            channel_id=CHANNEL_ID,
        )
        await self.db.commit()
        await self.db.refresh(budget)

        result.severity = severity
        result.sent_count = outcome.sent
        logger.info(
            f"Budget alert sent to user {budget.user_id}: "
            f"{outcome.sent} notifications, severity: {severity.value}"
        )
        return result

    async def send_alerts_to_all_users(
        self, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        current = to_utc(now) if now else utc_now()
        result = await self.db.execute(
            select(UserBudget.id).where(UserBudget.is_active.is_(True))
        )
        budget_ids = result.scalars().all()

        processed = 0
        sent = 0
        failed = 0
        for budget_id in budget_ids:
            try:
                budget = await self.db.get(UserBudget, budget_id)
                if budget is None:
                    continue
                alert = await self.check_and_alert(budget, now=current)
                if alert.alerted and alert.sent_count > 0:
                    sent += 1
            except Exception as e:
                failed += 1
                await self.db.rollback()
                logger.exception(f"Error processing budget {budget_id}: {str(e)}")
            processed += 1

        logger.info(
            f"Budget alert job completed: {processed} processed, {sent} sent, {failed} failed"
        )
        return {"processed": processed, "sent": sent, "failed": failed}

    async def get_budget_alert_status(
        self, user_id: uuid.UUID, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        budget = await self.get_budget(user_id)
        if not budget:
            return {"has_alert": False, "percentage": 0.0}

        has_alert = budget.last_alert_period == month_period_key(now)
        return {
            "has_alert": has_alert,
            "percentage": budget.last_alert_percentage or 0.0,
            "severity": budget.last_alert_severity if has_alert else None,
            "last_alert_at": budget.last_alert_at,
        }

    async def update_budget(
        self,
        user_id: uuid.UUID,
        amount: float,
        alert_threshold: Optional[float] = None,
        is_active: Optional[bool] = None,
    ) -> UserBudget:
        """
        Create or replace the user's budget in their base currency.

        Changing the amount or threshold, or reactivating the budget, clears the
        alert state so the new limits can alert again this month.
        """
        if amount is None or amount <= 0:
            raise ValueError("INVALID_BUDGET_AMOUNT: amount must be greater than 0")
        if alert_threshold is not None and not 0 < alert_threshold <= 1:
            raise ValueError("INVALID_BUDGET_AMOUNT: alertThreshold must be within (0, 1]")

        preferences = await self.preferences.get(user_id)
        budget = await self.get_budget(user_id)

        if budget is None:
            budget = UserBudget(
                user_id=user_id,
                amount=amount,
                currency=preferences.base_currency,
                alert_threshold=alert_threshold if alert_threshold is not None else 0.8,
                is_active=is_active if is_active is not None else True,
            )
            self.db.add(budget)
        else:
            next_threshold = (
                alert_threshold if alert_threshold is not None else budget.alert_threshold
            )
            next_active = is_active if is_active is not None else budget.is_active
            reset_alerts = (
                next_threshold != budget.alert_threshold
                or amount != budget.amount
                or (not budget.is_active and next_active)
            )
            budget.amount = amount
            budget.currency = preferences.base_currency
            budget.alert_threshold = next_threshold
            budget.is_active = next_active
            if reset_alerts:
                budget.last_alert_at = None
                budget.last_alert_severity = None
                budget.last_alert_period = None
                budget.last_alert_percentage = None

        await self.db.commit()
        await self.db.refresh(budget)
        return budget


def get_budget_alert_service(
    db: AsyncSession = Depends(get_async_session),
) -> BudgetAlertService:
    """Dependency to get BudgetAlertService instance"""
    return BudgetAlertService(db)
