# backend configuration
# loads env vars for mongodb, gemini, and the analytics windows used by the dashboard

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# load .env from project root
load_dotenv(Path(__file__).parent.parent.parent / ".env")


class Settings(BaseSettings):
    # mongodb
    MONGODB_URI: str = os.getenv("MONGODB_URI", "")
    MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE", "serenity_db")
    MONGODB_MIN_POOL_SIZE: int = 0
    MONGODB_MAX_POOL_SIZE: int = 10
    MONGODB_WAIT_QUEUE_TIMEOUT_MS: int = 10000

    # collection names
    USERS_COLLECTION: str = "users"
    TEST_RESULTS_COLLECTION: str = "test_results"
    CHATS_COLLECTION: str = "chats"
    CHAT_MESSAGES_COLLECTION: str = "chat_messages"

    # gemini (for insight generation)
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    GEMINI_TEMPERATURE: float = 0.4
    GEMINI_MAX_OUTPUT_TOKENS: int = 4096

    # insight agents
    INSIGHTS_LANGUAGE: str = "Spanish"
    AGENT_TIMEOUT_SECONDS: Optional[float] = None

    # analytics windows and caps
    EFFECTIVENESS_MIN_SPAN_DAYS: int = 30
    MONTHLY_ACTIVITY_MONTHS: int = 6
    WEEKLY_ACTIVITY_DAYS: int = 7
    USAGE_PATTERN_DAYS: int = 30
    USAGE_PATTERN_TOP_N: int = 3
    RESPONSE_SAMPLE_LIMIT: int = 100
    CHAT_ANALYTICS_LIMIT: int = 50

    # cors
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # seed script
    SEED_DEMO_DATA: bool = False

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
