"""FastAPI dependency injection functions."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from db.database import AsyncSessionLocal
from worker.queue import JobQueue, get_job_queue

logger = logging.getLogger(__name__)


async def get_db() -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database error: {str(e)}")
            await session.rollback()
            raise
        finally:
            await session.close()


def get_queue() -> JobQueue:
    """Job queue used to hand work to the Celery workers."""
    return get_job_queue()
