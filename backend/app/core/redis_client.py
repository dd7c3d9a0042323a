"""
Redis client initialization and connection management.

Redis holds the fiscal numbering locks, keyed per point of sale and voucher type.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError
from backend.app.core.config import settings

logger = logging.getLogger(__name__)

# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.

    This can be used as a FastAPI dependency if needed.
    """
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except (RedisError, OSError) as e:
        logger.warning("Redis ping failed: %s", e)
        return False


def fiscal_lock_name(point_of_sale: int, voucher_type: int) -> str:
    """Lock key serializing number assignment for one (point of sale, voucher type) pair."""
    return f"fiscal:voucher:{point_of_sale}:{voucher_type}"
