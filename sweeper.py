import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from database import DurableStore
from logging_config import get_logger
from models import utcnow

logger = get_logger(__name__)


@dataclass
class SweepResult:
    deleted_count: int = 0
    errors: list[str] = field(default_factory=list)


def cleanup_expired_rooms(durable: DurableStore, now: Optional[datetime] = None) -> SweepResult:
    """Delete expired rooms from the durable store; participants and messages go with them.

    A failure on one room is recorded and the batch carries on.
    """
    now = now or utcnow()
    result = SweepResult()
    try:
        codes = durable.expired_room_codes(now)
    except SQLAlchemyError as e:
        error = f"Error during cleanup: {e}"
        logger.error(error)
        result.errors.append(error)
        return result

    logger.info(f"Found {len(codes)} expired rooms to clean up")
    for code in codes:
        try:
            if durable.delete_room(code):
                result.deleted_count += 1
                logger.info(f"Deleted expired room: {code}")
        except SQLAlchemyError as e:
            error = f"Failed to delete room {code}: {e}"
            logger.error(error)
            result.errors.append(error)
    return result


def mark_inactive_rooms(durable: DurableStore, now: Optional[datetime] = None) -> int:
    """Flag expired rooms inactive without deleting them."""
    try:
        return durable.mark_inactive(now or utcnow())
    except SQLAlchemyError as e:
        logger.error(f"Error marking inactive rooms: {e}")
        return 0


class ExpirySweeper:
    """Runs ``cleanup_expired_rooms`` every ``interval_seconds`` on the event loop."""

    def __init__(self, durable: DurableStore, interval_seconds: int,
                 clock: Callable[[], datetime] = utcnow):
        self.durable = durable
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            logger.info(f"Expiry sweeper started, running every {self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweeper stopped")

    async def run_once(self) -> SweepResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, cleanup_expired_rooms, self.durable, self.clock())

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                result = await self.run_once()
                if result.deleted_count or result.errors:
                    logger.info(f"Sweep removed {result.deleted_count} rooms with {len(result.errors)} errors")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Expiry sweep failed: {e}", exc_info=True)
