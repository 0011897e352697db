import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from fastapi import Depends
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import DevicePlatform, UserDevice
from app.db.session import get_async_session
from app.services.notifications.push_gateway import (
    PushGateway,
    PushMessage,
    PushResult,
)
from app.utils.datetime_utils import naive_utc_now, to_naive_utc
from app.utils.logging import get_logger

logger = get_logger()


@dataclass
class DispatchOutcome:
    """Aggregated result of pushing one notification to all of a user's devices"""

    results: List[PushResult] = field(default_factory=list)
    tokens_deactivated: int = 0

    @property
    def sent(self) -> int:
        return sum(1 for result in self.results if result.delivered)

    @property
    def failed(self) -> int:
        return len(self.results) - self.sent

    @property
    def delivered(self) -> bool:
        return self.sent > 0

    @property
    def message_ids(self) -> List[str]:
        return [r.message_id for r in self.results if r.delivered and r.message_id]

    @property
    def last_error(self) -> Optional[str]:
        errors = [r.error for r in self.results if r.error]
        return errors[-1] if errors else None


class DeviceRegistryService:
    """Push token registry; resolves and prunes a user's device tokens"""

    def __init__(self, db_session: AsyncSession, gateway: Optional[PushGateway] = None):
        self.db = db_session
        self.gateway = gateway or PushGateway()

    async def get_active_devices(self, user_id: uuid.UUID) -> Sequence[UserDevice]:
        result = await self.db.execute(
            select(UserDevice)
            .where(and_(UserDevice.user_id == user_id, UserDevice.is_active.is_(True)))
            .order_by(UserDevice.last_active_at.desc())
        )
        return result.scalars().all()

    async def get_active_tokens(self, user_id: uuid.UUID) -> List[str]:
        """Distinct active tokens, most recently active device first"""
        tokens: List[str] = []
        for device in await self.get_active_devices(user_id):
            if device.expo_push_token not in tokens:
                tokens.append(device.expo_push_token)
        return tokens

    async def register_device(
        self,
        user_id: uuid.UUID,
        expo_push_token: str,
        device_id: str,
        platform: DevicePlatform,
        app_version: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> UserDevice:
        """Upsert by device id; a reinstalled app or a new owner takes over the row"""
        seen_at = to_naive_utc(now) if now else naive_utc_now()
        device = await self.db.scalar(
            select(UserDevice).where(UserDevice.device_id == device_id)
        )
        if device is None:
            device = UserDevice(
                user_id=user_id,
                expo_push_token=expo_push_token,
                device_id=device_id,
                platform=platform,
                app_version=app_version,
                is_active=True,
                last_active_at=seen_at,
            )
            self.db.add(device)
        else:
            device.user_id = user_id
            device.expo_push_token = expo_push_token
            device.platform = platform
            device.app_version = app_version
            device.is_active = True
            device.last_active_at = seen_at

        await self.db.commit()
        await self.db.refresh(device)
        logger.info(f"Registered {platform.value} device {device_id} for user {user_id}")
        return device

    async def deactivate_device(self, user_id: uuid.UUID, device_id: str) -> bool:
        result = await self.db.execute(
            update(UserDevice)
            .where(
                and_(UserDevice.user_id == user_id, UserDevice.device_id == device_id)
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return bool(result.rowcount)

    async def deactivate_tokens(self, tokens: Iterable[str]) -> int:
        """Mark every device holding one of ``tokens`` inactive (no commit)"""
        tokens = list(set(tokens))
        if not tokens:
            return 0
        result = await self.db.execute(
            update(UserDevice)
            .where(
                and_(
                    UserDevice.expo_push_token.in_(tokens),
                    UserDevice.is_active.is_(True),
                )
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        if count:
            logger.warning(f"Deactivated {count} device(s) with invalid push tokens")
        return count

    async def send_to_user(
        self,
        user_id: uuid.UUID,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
        channel_id: Optional[str] = None,
        tokens: Optional[List[str]] = None,
    ) -> DispatchOutcome:
        """
        Push one notification to every active device of ``user_id``.

        Tokens reported as permanently invalid are deactivated in the current
        transaction; committing is up to the caller. A user without devices
        yields an empty outcome.
        """
        if tokens is None:
            tokens = await self.get_active_tokens(user_id)
        if not tokens:
            return DispatchOutcome()

        messages = [
            PushMessage(
                to=token,
                title=title,
                body=body,
                data=dict(data or {}),
                channel_id=channel_id,
            )
            for token in tokens
        ]
        results = await self.gateway.send(messages)

        invalid = [r.token for r in results if r.should_deactivate_token]
        deactivated = await self.deactivate_tokens(invalid)
        return DispatchOutcome(results=results, tokens_deactivated=deactivated)


def get_device_registry_service(
    db: AsyncSession = Depends(get_async_session),
) -> DeviceRegistryService:
    """Dependency to get DeviceRegistryService instance"""
    return DeviceRegistryService(db)
