# raw data assembler — runs every extractor and packages one immutable snapshot
# extractors are independent reads so they run concurrently; the join waits for
# all of them and any data access failure aborts the whole snapshot

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from serenity.errors import DataAccessError
from serenity.models.dashboard import RawSnapshot
from serenity.services.db import Database
from serenity.services import extractors

logger = logging.getLogger(__name__)

# snapshot field -> extractor
EXTRACTORS = {
    "user_stats": extractors.extract_user_stats,
    "anxiety_levels": extractors.extract_anxiety_levels,
    "depression_levels": extractors.extract_depression_levels,
    "age_distribution": extractors.extract_age_distribution,
    "gender_distribution": extractors.extract_gender_distribution,
    "monthly_activity": extractors.extract_monthly_activity,
    "message_activity": extractors.extract_message_activity,
    "correlation_data": extractors.extract_correlation_data,
    "effectiveness": extractors.extract_effectiveness,
    "retention": extractors.extract_retention,
    "usage_patterns": extractors.extract_usage_patterns,
    "response_samples": extractors.extract_response_samples,
    "chat_analytics": extractors.extract_chat_analytics,
}


async def collect_snapshot(db: Database, now: Optional[datetime] = None) -> RawSnapshot:
    """run all extractors against the store and build the raw snapshot.

    every extractor is awaited even if one fails early; the first failure
    (in field order) is then raised so no partial snapshot escapes.
    """
    now = now or datetime.now(timezone.utc)

    names = list(EXTRACTORS)
    results = await asyncio.gather(
        *(EXTRACTORS[name](db, now) for name in names),
        return_exceptions=True,
    )

    views = {}
    failures = []
    for name, result in zip(names, results):
        if isinstance(result, BaseException):
            failures.append((name, result))
        else:
            views[name] = result

    if failures:
        for name, error in failures:
            logger.error(f"Extractor '{name}' failed: {error}")
        name, error = failures[0]
        if isinstance(error, DataAccessError) or not isinstance(error, Exception):
            raise error
        raise DataAccessError(f"Extractor '{name}' failed: {error}") from error

    snapshot = RawSnapshot(**views)
    logger.info(
        f"Snapshot collected: {snapshot.user_stats.total} users, "
        f"{snapshot.user_stats.total_tests} tests, {snapshot.user_stats.total_messages} messages"
    )
    return snapshot
