# async mongodb gateway for the analytics extractors
# uses motor for non-blocking aggregation with a bounded connection pool
#
# queries are declared as templates with Param placeholders; values are bound
# at execute time so no pipeline is ever built from user-influenced strings

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from serenity.config import Settings, settings
from serenity.errors import DataAccessError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Param:
    """named placeholder inside a query template pipeline"""
    name: str


@dataclass(frozen=True)
class QueryTemplate:
    """a named aggregation pipeline against one collection"""
    name: str
    collection: str
    pipeline: list[dict] = field(default_factory=list)

    def bind(self, params: Optional[dict[str, Any]] = None) -> list[dict]:
        """return a copy of the pipeline with every Param replaced by its value"""
        params = params or {}
        return [_bind_value(stage, params, self.name) for stage in self.pipeline]


def _bind_value(value: Any, params: dict[str, Any], query_name: str) -> Any:
    if isinstance(value, Param):
        if value.name not in params:
            raise DataAccessError(f"Query '{query_name}' is missing parameter '{value.name}'")
        return params[value.name]
    if isinstance(value, dict):
        return {k: _bind_value(v, params, query_name) for k, v in value.items()}
    if isinstance(value, list):
        return [_bind_value(v, params, query_name) for v in value]
    return copy.copy(value)


class DatabaseConfig(BaseModel):
    """connection parameters and pool bounds for the gateway"""
    uri: str
    database: str
    min_pool_size: int = 0
    max_pool_size: int = 10
    wait_queue_timeout_ms: int = 10000

    @classmethod
    def from_settings(cls, s: Settings) -> "DatabaseConfig":
        return cls(
            uri=s.MONGODB_URI,
            database=s.MONGODB_DATABASE,
            min_pool_size=s.MONGODB_MIN_POOL_SIZE,
            max_pool_size=s.MONGODB_MAX_POOL_SIZE,
            wait_queue_timeout_ms=s.MONGODB_WAIT_QUEUE_TIMEOUT_MS,
        )


class Database:
    """async mongodb connection manager.

    the client is created on first use (or at app startup) and kept for the
    life of the process. motor hands out one pooled connection per operation;
    callers beyond max_pool_size wait in the driver's queue up to
    wait_queue_timeout_ms.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None
        self._connect_lock = asyncio.Lock()

    async def connect(self):
        """establish connection to mongodb"""
        async with self._connect_lock:
            if self.client is not None:
                return

            if not self.config.uri:
                raise DataAccessError("MONGODB_URI is not configured")

            logger.info(
                f"Connecting to MongoDB database: {self.config.database} "
                f"(pool {self.config.min_pool_size}-{self.config.max_pool_size})"
            )
            client = None
            try:
                client = AsyncIOMotorClient(
                    self.config.uri,
                    minPoolSize=self.config.min_pool_size,
                    maxPoolSize=self.config.max_pool_size,
                    waitQueueTimeoutMS=self.config.wait_queue_timeout_ms,
                    tz_aware=True,
                )
                # verify connection
                await client.admin.command("ping")
            except PyMongoError as e:
                logger.error(f"MongoDB connection failed: {e}")
                # the next request retries with a fresh client
                if client is not None:
                    client.close()
                raise DataAccessError(f"Could not connect to MongoDB: {e}") from e

            self.client = client
            self.db = client[self.config.database]
            logger.info("MongoDB connection established")

    async def close(self):
        """close mongodb connection"""
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("MongoDB connection closed")

    async def execute(self, template: QueryTemplate, params: Optional[dict[str, Any]] = None) -> list[dict]:
        """bind params into the template, run it, and return the rows in order"""
        pipeline = template.bind(params)

        if self.db is None:
            await self.connect()

        try:
            cursor = self.db[template.collection].aggregate(pipeline)
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error(f"Query '{template.name}' on {template.collection} failed: {e}")
            raise DataAccessError(f"Query '{template.name}' failed: {e}") from e

    # collection accessors used by the seed script

    def collection(self, name: str):
        return self.db[name]


# singleton instance
db = Database(DatabaseConfig.from_settings(settings))


async def get_db() -> Database:
    """dependency injection for database access"""
    return db
