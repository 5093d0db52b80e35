# metric extractors — one statistical view per function
# each extractor is a function of (gateway, now) and issues its own templated queries.
# raw rows are mapped to typed models here and nowhere else.
#
# the database does the grouping; cohort rules, bucketing policy and rounding
# live in the pure helpers below so they can be tested without mongodb

import calendar
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from serenity.config import settings
from serenity.models.dashboard import (
    UserStats,
    NamedBucket,
    AgeBucket,
    MonthlyPoint,
    WeeklyMessagePoint,
    CorrelationBucket,
    EffectivenessSummary,
    RetentionSummary,
    UsageHourPoint,
    FreeTextSample,
    ChatAnalyticRow,
)
from serenity.services.db import Database, Param, QueryTemplate

logger = logging.getLogger(__name__)

USERS = settings.USERS_COLLECTION
TESTS = settings.TEST_RESULTS_COLLECTION
CHATS = settings.CHATS_COLLECTION
MESSAGES = settings.CHAT_MESSAGES_COLLECTION

UNSPECIFIED = "unspecified"
UNAVAILABLE = "unavailable"

AGE_BUCKET_ORDER = ("<18", "18-24", "25-34", "35-44", "45-54", "55+", UNSPECIFIED)

# (label, lowest score, highest score) — inclusive integer ranges
ANXIETY_SCORE_RANGES = (
    ("0-5", 0, 5),
    ("6-10", 6, 10),
    ("11-15", 11, 15),
    ("16-20", 16, 20),
    ("21+", 21, None),
)

MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

# mongodb $dayOfWeek: 1 = sunday
MONGO_WEEKDAYS = {1: "Sun", 2: "Mon", 3: "Tue", 4: "Wed", 5: "Thu", 6: "Fri", 7: "Sat"}
WEEKDAY_ORDER = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
WEEKDAY_TRANSLATIONS = {
    "Mon": "Lun",
    "Tue": "Mar",
    "Wed": "Mié",
    "Thu": "Jue",
    "Fri": "Vie",
    "Sat": "Sáb",
    "Sun": "Dom",
}


# query templates

TOTAL_USERS = QueryTemplate("total_users", USERS, [{"$count": "total"}])

NEW_USERS_SINCE = QueryTemplate("new_users_since", USERS, [
    {"$match": {"created_at": {"$gte": Param("since"), "$lte": Param("until")}}},
    {"$count": "total"},
])

TOTAL_TESTS = QueryTemplate("total_tests", TESTS, [{"$count": "total"}])

TOTAL_MESSAGES = QueryTemplate("total_messages", MESSAGES, [{"$count": "total"}])


def _label_distribution(name: str, field: str) -> QueryTemplate:
    return QueryTemplate(name, TESTS, [
        {"$match": {field: {"$ne": None}}},
        {"$group": {"_id": f"${field}", "value": {"$sum": 1}}},
        {"$sort": {"_id": 1}},
    ])


ANXIETY_DISTRIBUTION = _label_distribution("anxiety_distribution", "anxiety_label")
DEPRESSION_DISTRIBUTION = _label_distribution("depression_distribution", "depression_label")


def _between(field: str, low: int, high: int) -> dict:
    return {"$and": [{"$gte": [field, low]}, {"$lte": [field, high]}]}


AGE_DISTRIBUTION = QueryTemplate("age_distribution", USERS, [
    {"$match": {"age": {"$ne": None}}},
    {"$group": {
        "_id": {"$switch": {
            "branches": [
                {"case": {"$not": [{"$isNumber": "$age"}]}, "then": UNSPECIFIED},
                {"case": {"$lt": ["$age", 18]}, "then": "<18"},
                {"case": _between("$age", 18, 24), "then": "18-24"},
                {"case": _between("$age", 25, 34), "then": "25-34"},
                {"case": _between("$age", 35, 44), "then": "35-44"},
                {"case": _between("$age", 45, 54), "then": "45-54"},
                {"case": {"$gte": ["$age", 55]}, "then": "55+"},
            ],
            "default": UNSPECIFIED,
        }},
        "count": {"$sum": 1},
    }},
])

GENDER_DISTRIBUTION = QueryTemplate("gender_distribution", USERS, [
    {"$group": {"_id": "$gender", "value": {"$sum": 1}}},
    {"$sort": {"_id": 1}},
])

MONTHLY_NEW_USERS = QueryTemplate("monthly_new_users", USERS, [
    {"$match": {"created_at": {"$gte": Param("since")}}},
    {"$group": {
        "_id": {"$dateToString": {"format": "%Y-%m", "date": "$created_at"}},
        "new_users": {"$sum": 1},
    }},
    {"$sort": {"_id": 1}},
])

MONTHLY_TESTS = QueryTemplate("monthly_tests", TESTS, [
    {"$match": {"taken_at": {"$gte": Param("since")}}},
    {"$group": {
        "_id": {"$dateToString": {"format": "%Y-%m", "date": "$taken_at"}},
        "tests": {"$sum": 1},
    }},
    {"$sort": {"_id": 1}},
])

WEEKLY_MESSAGES = QueryTemplate("weekly_messages", MESSAGES, [
    {"$match": {"created_at": {"$gte": Param("since")}}},
    {"$group": {
        "_id": {"$dayOfWeek": "$created_at"},
        "messages": {"$sum": 1},
        "bot_replies": {"$sum": {"$cond": [{"$eq": ["$is_bot", True]}, 1, 0]}},
    }},
])

LATEST_ANXIETY_SCORES = QueryTemplate("latest_anxiety_scores", TESTS, [
    {"$match": {"anxiety_score": {"$ne": None}}},
    {"$sort": {"taken_at": -1, "_id": -1}},
    {"$group": {"_id": "$user_id", "score": {"$first": "$anxiety_score"}}},
])

MESSAGES_PER_USER = QueryTemplate("messages_per_user", MESSAGES, [
    {"$group": {"_id": "$chat_id", "count": {"$sum": 1}}},
    {"$lookup": {"from": CHATS, "localField": "_id", "foreignField": "_id", "as": "chat"}},
    {"$unwind": "$chat"},
    {"$group": {"_id": "$chat.user_id", "message_count": {"$sum": "$count"}}},
])

TEST_SPANS = QueryTemplate("test_spans", TESTS, [
    {"$sort": {"taken_at": 1, "_id": 1}},
    {"$group": {
        "_id": "$user_id",
        "first_date": {"$first": "$taken_at"},
        "last_date": {"$last": "$taken_at"},
        "first_score": {"$first": "$anxiety_score"},
        "last_score": {"$last": "$anxiety_score"},
        "tests": {"$sum": 1},
    }},
    {"$match": {"tests": {"$gte": 2}}},
    {"$sort": {"_id": 1}},
])

USER_ACTIVITY = QueryTemplate("user_activity", USERS, [
    {"$lookup": {"from": CHATS, "localField": "_id", "foreignField": "user_id", "as": "chats"}},
    {"$lookup": {"from": TESTS, "localField": "_id", "foreignField": "user_id", "as": "tests"}},
    {"$project": {
        "created_at": 1,
        "updated_at": 1,
        "last_chat_at": {"$max": "$chats.updated_at"},
        "last_test_at": {"$max": "$tests.taken_at"},
    }},
    {"$sort": {"_id": 1}},
])

USAGE_HOURS = QueryTemplate("usage_hours", MESSAGES, [
    {"$match": {"created_at": {"$gte": Param("since")}}},
    {"$group": {"_id": {"$hour": "$created_at"}, "messages": {"$sum": 1}}},
    {"$sort": {"messages": -1, "_id": 1}},
    {"$limit": Param("limit")},
])

RESPONSE_SAMPLES = QueryTemplate("response_samples", TESTS, [
    {"$match": {"extra_answers": {"$ne": None}}},
    {"$sort": {"_id": 1}},
    {"$limit": Param("limit")},
    {"$project": {"_id": 0, "text": "$extra_answers"}},
])

CHAT_ROLLUPS = QueryTemplate("chat_rollups", MESSAGES, [
    {"$group": {"_id": "$chat_id", "message_count": {"$sum": 1}}},
    {"$lookup": {"from": CHATS, "localField": "_id", "foreignField": "_id", "as": "chat"}},
    {"$unwind": "$chat"},
    {"$lookup": {"from": USERS, "localField": "chat.user_id", "foreignField": "_id", "as": "user"}},
    {"$unwind": "$user"},
    {"$lookup": {"from": TESTS, "localField": "chat.user_id", "foreignField": "user_id", "as": "tests"}},
    {"$project": {
        "chat_name": "$chat.name",
        "user_gender": "$user.gender",
        "user_age": "$user.age",
        "message_count": 1,
        "max_anxiety": {"$max": "$tests.anxiety_score"},
        "max_depression": {"$max": "$tests.depression_score"},
    }},
    {"$sort": {"message_count": -1, "_id": 1}},
    {"$limit": Param("limit")},
])


# helpers

def round_half_up(value: float, digits: int = 1) -> float:
    """round like sql ROUND(): halves go away from zero"""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """treat naive datetimes as utc"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def months_ago(now: datetime, months: int) -> datetime:
    """same wall-clock time n calendar months earlier, clamped to the month's last day"""
    index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def whole_months_between(start: datetime, end: datetime) -> int:
    """number of complete calendar months from start to end, never negative"""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if (end.day, end.timetz()) < (start.day, start.timetz()):
        months -= 1
    return max(months, 0)


def _first_count(rows: list[dict], key: str = "total") -> int:
    if not rows:
        return 0
    return int(rows[0].get(key) or 0)


def translate_weekday(label: str) -> str:
    return WEEKDAY_TRANSLATIONS.get(label, label)


def month_label(month_key: str) -> str:
    """short english month name for a 'YYYY-MM' key"""
    try:
        return MONTH_LABELS[int(month_key[5:7]) - 1]
    except (ValueError, IndexError):
        return month_key


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def anxiety_score_range(score: Any) -> str:
    # fractional scores fall between the integer ranges
    if not _is_number(score) or not float(score).is_integer():
        return UNAVAILABLE
    for label, low, high in ANXIETY_SCORE_RANGES:
        if score >= low and (high is None or score <= high):
            return label
    return UNAVAILABLE


def to_named_buckets(rows: Iterable[dict]) -> tuple[NamedBucket, ...]:
    return tuple(
        NamedBucket(name=str(row["_id"]), value=int(row.get("value") or 0))
        for row in rows
    )


def merge_gender_rows(rows: Iterable[dict]) -> tuple[NamedBucket, ...]:
    """group by raw gender, folding null and empty values into 'unspecified'"""
    counts: dict[str, int] = defaultdict(int)
    for row in rows:
        raw = row.get("_id")
        name = str(raw).strip() if raw is not None else ""
        counts[name or UNSPECIFIED] += int(row.get("value") or 0)
    return tuple(NamedBucket(name=name, value=counts[name]) for name in sorted(counts))


def order_age_rows(rows: Iterable[dict]) -> tuple[AgeBucket, ...]:
    def position(row: dict) -> int:
        name = row.get("_id")
        return AGE_BUCKET_ORDER.index(name) if name in AGE_BUCKET_ORDER else len(AGE_BUCKET_ORDER)

    return tuple(
        AgeBucket(name=str(row["_id"]), count=int(row.get("count") or 0))
        for row in sorted(rows, key=position)
    )


def merge_monthly_activity(user_rows: Iterable[dict], test_rows: Iterable[dict]) -> tuple[MonthlyPoint, ...]:
    """left join of test counts onto the new-user months.

    months that only appear in the test series are dropped; a user month
    without a matching test row gets 0 tests.
    """
    tests_by_month = {row["_id"]: int(row.get("tests") or 0) for row in test_rows}
    points = [
        MonthlyPoint(
            month=row["_id"],
            name=month_label(row["_id"]),
            newUsers=int(row.get("new_users") or 0),
            tests=tests_by_month.get(row["_id"], 0),
        )
        for row in user_rows
    ]
    return tuple(sorted(points, key=lambda p: p.month))


def shape_weekly_activity(rows: Iterable[dict]) -> tuple[WeeklyMessagePoint, ...]:
    """order mongodb weekday groups mon→sun and translate the labels"""
    by_day: dict[str, dict] = {}
    for row in rows:
        raw = row.get("_id")
        label = MONGO_WEEKDAYS.get(raw, str(raw))
        by_day[label] = row

    def position(label: str) -> int:
        return WEEKDAY_ORDER.index(label) if label in WEEKDAY_ORDER else len(WEEKDAY_ORDER)

    return tuple(
        WeeklyMessagePoint(
            day=translate_weekday(label),
            messages=int(by_day[label].get("messages") or 0),
            botReplies=int(by_day[label].get("bot_replies") or 0),
        )
        for label in sorted(by_day, key=position)
    )


def correlate_anxiety_usage(score_rows: Iterable[dict], message_rows: Iterable[dict]) -> tuple[CorrelationBucket, ...]:
    """mean message count per anxiety score range.

    each user contributes their latest score once; users with no messages
    are not part of the join.
    """
    messages_by_user = {
        row["_id"]: int(row.get("message_count") or 0)
        for row in message_rows
        if row.get("message_count")
    }

    counts: dict[str, list[int]] = defaultdict(list)
    lowest: dict[str, float] = {}
    for row in score_rows:
        user_id = row.get("_id")
        score = row.get("score")
        if user_id not in messages_by_user or score is None:
            continue
        label = anxiety_score_range(score)
        counts[label].append(messages_by_user[user_id])
        order_key = float(score) if _is_number(score) else float("inf")
        lowest[label] = min(lowest.get(label, order_key), order_key)

    return tuple(
        CorrelationBucket(
            score=label,
            meanMessages=round_half_up(sum(counts[label]) / len(counts[label]), 2),
        )
        for label in sorted(counts, key=lambda name: (lowest[name], name))
    )


def summarize_effectiveness(rows: Iterable[dict], min_span_days: int) -> EffectivenessSummary:
    """compare first vs last anxiety score for users whose tests span at least min_span_days"""
    eligible = 0
    improved = 0
    for row in rows:
        first_date = as_utc(row.get("first_date"))
        last_date = as_utc(row.get("last_date"))
        if first_date is None or last_date is None or int(row.get("tests") or 0) < 2:
            continue
        if (last_date.date() - first_date.date()).days < min_span_days:
            continue

        eligible += 1
        first_score = row.get("first_score")
        last_score = row.get("last_score")
        if first_score is not None and last_score is not None and last_score < first_score:
            improved += 1

    if eligible == 0:
        return EffectivenessSummary()

    return EffectivenessSummary(
        totalUsers=eligible,
        improved=improved,
        improvementPercentage=round_half_up(improved / eligible * 100, 1),
    )


def summarize_retention(rows: Iterable[dict], now: datetime) -> RetentionSummary:
    """mean months between first and last activity plus a one-month retention ratio"""
    now = as_utc(now)
    one_month_ago = months_ago(now, 1)
    two_months_ago = months_ago(now, 2)

    months_active: list[int] = []
    active_this_month = 0
    active_prior_month = 0
    for row in rows:
        first_seen = as_utc(row.get("created_at"))
        candidates = [
            as_utc(row.get(key))
            for key in ("created_at", "updated_at", "last_chat_at", "last_test_at")
        ]
        candidates = [c for c in candidates if c is not None]
        if first_seen is None or not candidates:
            continue
        last_active = max(candidates)

        months_active.append(whole_months_between(first_seen, last_active))
        if last_active >= one_month_ago:
            active_this_month += 1
        if last_active >= two_months_ago:
            active_prior_month += 1

    if not months_active:
        return RetentionSummary()

    rate = 0.0
    if active_prior_month > 0:
        rate = round_half_up(active_this_month / active_prior_month * 100, 1)

    return RetentionSummary(
        meanMonthsActive=round_half_up(sum(months_active) / len(months_active), 1),
        activeThisMonth=active_this_month,
        activePriorMonth=active_prior_month,
        retentionRate=rate,
    )


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_chat_rows(rows: Iterable[dict]) -> tuple[ChatAnalyticRow, ...]:
    return tuple(
        ChatAnalyticRow(
            chatId=str(row["_id"]),
            chatName=row.get("chat_name") or "",
            userGender=row.get("user_gender"),
            userAge=_optional_int(row.get("user_age")),
            messageCount=int(row.get("message_count") or 0),
            maxAnxiety=_optional_float(row.get("max_anxiety")),
            maxDepression=_optional_float(row.get("max_depression")),
        )
        for row in rows
    )


# extractors

async def extract_user_stats(db: Database, now: datetime) -> UserStats:
    total = await db.execute(TOTAL_USERS)
    new_this_month = await db.execute(NEW_USERS_SINCE, {"since": month_start(now), "until": now})
    tests = await db.execute(TOTAL_TESTS)
    messages = await db.execute(TOTAL_MESSAGES)
    return UserStats(
        total=_first_count(total),
        newThisMonth=_first_count(new_this_month),
        totalTests=_first_count(tests),
        totalMessages=_first_count(messages),
    )


async def extract_anxiety_levels(db: Database, now: datetime) -> tuple[NamedBucket, ...]:
    return to_named_buckets(await db.execute(ANXIETY_DISTRIBUTION))


async def extract_depression_levels(db: Database, now: datetime) -> tuple[NamedBucket, ...]:
    return to_named_buckets(await db.execute(DEPRESSION_DISTRIBUTION))


async def extract_age_distribution(db: Database, now: datetime) -> tuple[AgeBucket, ...]:
    return order_age_rows(await db.execute(AGE_DISTRIBUTION))


async def extract_gender_distribution(db: Database, now: datetime) -> tuple[NamedBucket, ...]:
    return merge_gender_rows(await db.execute(GENDER_DISTRIBUTION))


async def extract_monthly_activity(db: Database, now: datetime) -> tuple[MonthlyPoint, ...]:
    since = months_ago(now, settings.MONTHLY_ACTIVITY_MONTHS)
    user_rows = await db.execute(MONTHLY_NEW_USERS, {"since": since})
    test_rows = await db.execute(MONTHLY_TESTS, {"since": since})
    return merge_monthly_activity(user_rows, test_rows)


async def extract_message_activity(db: Database, now: datetime) -> tuple[WeeklyMessagePoint, ...]:
    since = now - timedelta(days=settings.WEEKLY_ACTIVITY_DAYS)
    return shape_weekly_activity(await db.execute(WEEKLY_MESSAGES, {"since": since}))


async def extract_correlation_data(db: Database, now: datetime) -> tuple[CorrelationBucket, ...]:
    score_rows = await db.execute(LATEST_ANXIETY_SCORES)
    message_rows = await db.execute(MESSAGES_PER_USER)
    return correlate_anxiety_usage(score_rows, message_rows)


async def extract_effectiveness(db: Database, now: datetime) -> EffectivenessSummary:
    rows = await db.execute(TEST_SPANS)
    return summarize_effectiveness(rows, settings.EFFECTIVENESS_MIN_SPAN_DAYS)


async def extract_retention(db: Database, now: datetime) -> RetentionSummary:
    return summarize_retention(await db.execute(USER_ACTIVITY), now)


async def extract_usage_patterns(db: Database, now: datetime) -> tuple[UsageHourPoint, ...]:
    since = now - timedelta(days=settings.USAGE_PATTERN_DAYS)
    rows = await db.execute(USAGE_HOURS, {"since": since, "limit": settings.USAGE_PATTERN_TOP_N})
    return tuple(
        UsageHourPoint(hour=int(row["_id"]), messages=int(row.get("messages") or 0))
        for row in rows
    )


async def extract_response_samples(db: Database, now: datetime) -> tuple[FreeTextSample, ...]:
    rows = await db.execute(RESPONSE_SAMPLES, {"limit": settings.RESPONSE_SAMPLE_LIMIT})
    return tuple(FreeTextSample(text=str(row.get("text") or "")) for row in rows)


async def extract_chat_analytics(db: Database, now: datetime) -> tuple[ChatAnalyticRow, ...]:
    rows = await db.execute(CHAT_ROLLUPS, {"limit": settings.CHAT_ANALYTICS_LIMIT})
    return to_chat_rows(rows)
