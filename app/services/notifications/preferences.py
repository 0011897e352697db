import uuid
from dataclasses import dataclass
from typing import Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import settings
from app.db.models import UserSettings
from app.services.notifications.messages import normalize_language
from app.utils.datetime_utils import is_valid_timezone


@dataclass(frozen=True)
class UserPreferences:
    timezone: str
    language: str
    default_event_time: str
    base_currency: str
    notifications_enabled: bool = True
    budget_notifications_enabled: bool = True


def default_preferences() -> UserPreferences:
    return UserPreferences(
        timezone=settings.DEFAULT_TIMEZONE,
        language=normalize_language(settings.DEFAULT_LANGUAGE),
        default_event_time=settings.DEFAULT_EVENT_TIME,
        base_currency=settings.DEFAULT_BASE_CURRENCY,
    )


class UserPreferenceCache:
    """
    Per-user timezone/language lookups memoized for one job invocation.

    Create one per run and drop it afterwards; instances are never shared
    between runs or requests.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session
        self._cache: Dict[uuid.UUID, UserPreferences] = {}

    async def get(self, user_id: uuid.UUID) -> UserPreferences:
        if user_id in self._cache:
            return self._cache[user_id]

        row = await self.db.scalar(
            select(UserSettings).where(UserSettings.user_id == user_id)
        )
        if row is None:
            preferences = default_preferences()
        else:
            preferences = UserPreferences(
                timezone=(
                    row.timezone
                    if row.timezone and is_valid_timezone(row.timezone)
                    else settings.DEFAULT_TIMEZONE
                ),
                language=normalize_language(row.language),
                default_event_time=row.default_event_time or settings.DEFAULT_EVENT_TIME,
                base_currency=row.base_currency or settings.DEFAULT_BASE_CURRENCY,
                notifications_enabled=row.notifications_enabled,
                budget_notifications_enabled=row.budget_notifications_enabled,
            )

        self._cache[user_id] = preferences
        return preferences

    def __len__(self) -> int:
        return len(self._cache)
