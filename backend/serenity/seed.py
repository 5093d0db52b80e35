# seed script — creates the indexes the dashboard extractors rely on
# optionally inserts a small demo dataset into an empty database
# run once: python -m serenity.seed

import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone

from bson import ObjectId

from serenity.config import settings
from serenity.services.db import db

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

ANXIETY_LABELS = [(4, "Minimal"), (9, "Mild"), (14, "Moderate"), (21, "Severe")]
DEPRESSION_LABELS = [(4, "Minimal"), (9, "Mild"), (14, "Moderate"), (19, "Moderately severe"), (27, "Severe")]
EXTRA_ANSWERS = [
    "I have trouble sleeping before exams",
    "Work has been overwhelming lately",
    "Talking to the bot at night helps me calm down",
    "",
    "I feel lonely since I moved to a new city",
]


def _label(score: int, table: list[tuple[int, str]]) -> str:
    for upper, label in table:
        if score <= upper:
            return label
    return table[-1][1]


def build_demo_documents(now: datetime, users: int = 12, seed: int = 7) -> dict[str, list[dict]]:
    """deterministic demo users, tests, chats and messages spread over the last 8 months"""
    rng = random.Random(seed)
    docs = {"users": [], "test_results": [], "chats": [], "chat_messages": []}

    for i in range(users):
        user_id = ObjectId()
        created = now - timedelta(days=rng.randint(5, 240))
        docs["users"].append({
            "_id": user_id,
            "created_at": created,
            "updated_at": created + timedelta(days=rng.randint(0, 30)),
            "age": rng.choice([None, 16, 19, 23, 29, 33, 41, 52, 60]),
            "gender": rng.choice([None, "", "female", "male", "non-binary"]),
        })

        # two to four tests, scores drifting down for most users
        score = rng.randint(6, 24)
        taken = created + timedelta(days=1)
        for _ in range(rng.randint(2, 4)):
            depression = rng.randint(0, 27)
            docs["test_results"].append({
                "_id": ObjectId(),
                "user_id": user_id,
                "taken_at": min(taken, now),
                "anxiety_score": score,
                "anxiety_label": _label(score, ANXIETY_LABELS),
                "depression_score": depression,
                "depression_label": _label(depression, DEPRESSION_LABELS),
                "extra_answers": rng.choice(EXTRA_ANSWERS + [None]),
            })
            score = max(0, score + rng.randint(-5, 2))
            taken += timedelta(days=rng.randint(10, 40))

        chat_id = ObjectId()
        docs["chats"].append({
            "_id": chat_id,
            "user_id": user_id,
            "name": f"Chat {i + 1}",
            "updated_at": now - timedelta(days=rng.randint(0, 60)),
        })
        for _ in range(rng.randint(4, 30)):
            docs["chat_messages"].append({
                "_id": ObjectId(),
                "chat_id": chat_id,
                "created_at": now - timedelta(days=rng.randint(0, 40), hours=rng.randint(0, 23)),
                "is_bot": rng.random() < 0.5,
            })

    return docs


async def seed():
    """create indexes, then insert demo data when enabled and the database is empty"""
    await db.connect()

    users = db.collection(settings.USERS_COLLECTION)
    tests = db.collection(settings.TEST_RESULTS_COLLECTION)
    chats = db.collection(settings.CHATS_COLLECTION)
    messages = db.collection(settings.CHAT_MESSAGES_COLLECTION)

    await users.create_index("created_at")
    await tests.create_index([("user_id", 1), ("taken_at", 1)])
    await chats.create_index("user_id")
    await messages.create_index("chat_id")
    await messages.create_index("created_at")
    logger.info("Created indexes on analytics collections")

    if settings.SEED_DEMO_DATA:
        existing = await users.count_documents({})
        if existing:
            logger.info(f"Users collection already has {existing} documents, skipping demo data")
        else:
            docs = build_demo_documents(datetime.now(timezone.utc))
            await users.insert_many(docs["users"])
            await tests.insert_many(docs["test_results"])
            await chats.insert_many(docs["chats"])
            await messages.insert_many(docs["chat_messages"])
            logger.info(
                f"Inserted demo data: {len(docs['users'])} users, {len(docs['test_results'])} tests, "
                f"{len(docs['chat_messages'])} messages"
            )

    logger.info("Seed complete!")
    await db.close()


if __name__ == "__main__":
    asyncio.run(seed())
