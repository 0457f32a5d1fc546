import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

from forum import config


logger = logging.getLogger(__name__)


def connect(url: str = None, name: str = None):
    """Create the Motor client and return the application database."""
    client = AsyncIOMotorClient(url or config.MONGODB_URL)
    return client[name or config.DATABASE_NAME]


async def ensure_indexes(db):
    """Initialize DB indexes"""
    # Unique identities
    await db.posts.create_index("post_id", unique=True)
    await db.comments.create_index("comment_id", unique=True)
    await db.announcements.create_index("announcement_id", unique=True)
    await db.tags.create_index("name", unique=True)
    await db.searches.create_index("text", unique=True)
    await db.users.create_index("email", unique=True)

    # Sorting & query optimization
    await db.posts.create_index([("created_at", DESCENDING)])
    await db.posts.create_index([("authorEmail", ASCENDING), ("created_at", DESCENDING)])
    await db.posts.create_index([("tags", ASCENDING)])
    await db.comments.create_index([("postId", ASCENDING), ("created_at", DESCENDING)])
    await db.comments.create_index([("reported", ASCENDING), ("created_at", DESCENDING)])
    await db.searches.create_index([("votes", DESCENDING), ("created_at", DESCENDING)])
    logger.info("Indexes ensured on %s", db.name)
