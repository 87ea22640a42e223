"""Credit estimation and compare-and-set consumption."""
import asyncio
import logging
import math
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from reelsmith.config import settings
from reelsmith.db.database import async_session_maker
from reelsmith.models.credits import CreditUsageLog, UserCredits
from reelsmith.pipeline.profiles import ContentClass
from reelsmith.utils.ffmpeg import probe_media

logger = logging.getLogger(__name__)

HIGHLIGHTS_FEATURE = "highlights"


class InsufficientCreditsError(Exception):
    """Raised by the submission path when a debit is refused."""

    def __init__(self, required: int, available: Optional[int] = None):
        self.required = required
        self.available = available
        message = f"Insufficient credits: {required} required"
        if available is not None:
            message += f", {available} available"
        super().__init__(message)


def credits_per_hour(content_class: ContentClass) -> int:
    if content_class == ContentClass.SPEECH_DOMINANT:
        return settings.credits_per_hour_speech
    return settings.credits_per_hour_visual


def cost_for_duration(duration_seconds: float, content_class: ContentClass) -> int:
    """Whole started hours times the class rate. Anything billable costs at least one hour."""
    hours = max(1, math.ceil(duration_seconds / 3600))
    return hours * credits_per_hour(content_class)


class CreditLedger:
    """Per-user credit balances backed by ``user_credits`` and ``credit_usage_log``."""

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self.session_maker = session_maker or async_session_maker
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def estimate_cost(self, source_path: str | Path, content_class: ContentClass) -> int:
        """
        Price a job from the real duration of its source.

        Args:
            source_path: Local path to the source media
            content_class: Classification fixed at submission

        Returns:
            Credits required

        Raises:
            FFmpegError: If the source cannot be probed
        """
        info = await probe_media(source_path)
        cost = cost_for_duration(info.duration, content_class)
        logger.debug(f"Estimated {cost} credits for {info.duration:.1f}s ({content_class.value})")
        return cost

    async def get_balance(self, user_id: str) -> int:
        async with self.session_maker() as session:
            result = await session.execute(
                select(UserCredits.current_credits).where(UserCredits.user_id == user_id)
            )
            balance = result.scalar_one_or_none()
        return balance or 0

    async def consume(
        self,
        user_id: str,
        credits: int,
        reason: str = HIGHLIGHTS_FEATURE,
        metadata: Optional[dict] = None,
    ) -> bool:
        """
        Debit ``credits`` if the balance covers it.

        The decrement is a conditional UPDATE so the balance can never go
        negative; the audit row is written in the same transaction.

        Returns:
            True if debited, False if the balance was insufficient
        """
        if credits < 0:
            raise ValueError("Cannot consume a negative amount of credits")

        async with self._locks[user_id]:
            async with self.session_maker() as session:
                result = await session.execute(
                    update(UserCredits)
                    .where(UserCredits.user_id == user_id)
                    .where(UserCredits.current_credits >= credits)
                    .values(
                        current_credits=UserCredits.current_credits - credits,
                        updated_at=datetime.utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    await session.rollback()
                    logger.info(f"Refused debit of {credits} credits for user {user_id}")
                    return False

                remaining = (
                    await session.execute(
                        select(UserCredits.current_credits).where(UserCredits.user_id == user_id)
                    )
                ).scalar_one()

                session.add(CreditUsageLog(
                    user_id=user_id,
                    feature_name=reason,
                    credits_consumed=credits,
                    remaining_credits=remaining,
                    details=metadata,
                ))
                await session.commit()

        logger.info(f"Debited {credits} credits from user {user_id}, {remaining} remaining")
        return True

    async def grant(self, user_id: str, credits: int, reason: str = "grant") -> int:
        """Add credits, creating the balance row if needed. Returns the new balance."""
        if credits <= 0:
            raise ValueError("Grant must be positive")

        async with self._locks[user_id]:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(UserCredits).where(UserCredits.user_id == user_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = UserCredits(user_id=user_id, current_credits=0)
                    session.add(row)
                row.current_credits += credits

                session.add(CreditUsageLog(
                    user_id=user_id,
                    feature_name=reason,
                    credits_consumed=-credits,
                    remaining_credits=row.current_credits,
                ))
                await session.commit()
                return row.current_credits

    async def usage_history(self, user_id: str, limit: int = 50) -> List[CreditUsageLog]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(CreditUsageLog)
                .where(CreditUsageLog.user_id == user_id)
                .order_by(CreditUsageLog.created_at.desc(), CreditUsageLog.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
