import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from utilities import MISSED_TTL_SECONDS, TTL_CLEANUP_INTERVAL_SECONDS, KeyedLock, now_utc

from .models import GradeNotification

logger = logging.getLogger(__name__)


class NotificationStore:
    '''
    Recent notifications per student, kept for `ttl` after publication so a
    student who was offline can fetch what they missed.
    '''

    def __init__(
        self,
        ttl: timedelta = timedelta(seconds=MISSED_TTL_SECONDS),
        clock: Callable[[], datetime] = now_utc,
    ):
        self.ttl = ttl
        self.clock = clock
        self._history: Dict[str, List[GradeNotification]] = {}
        self._locks = KeyedLock()

    async def append(self, record: GradeNotification) -> None:
        async with self._locks.hold(record.student_id):
            self._history.setdefault(record.student_id, []).append(record)

    async def query(self, student_id: str, since: Optional[datetime] = None) -> List[GradeNotification]:
        ''' Retained records in insertion order, optionally only those published at or after `since`. '''
        cutoff = self.clock() - self.ttl
        async with self._locks.hold(student_id):
            records = list(self._history.get(student_id, ()))
        return [
            r for r in records
            if r.published_at >= cutoff and (since is None or r.published_at >= since)
        ]

    async def expire(self, now: Optional[datetime] = None) -> int:
        ''' Drop records older than the TTL; returns how many were dropped. '''
        cutoff = (now or self.clock()) - self.ttl
        dropped = 0
        for student_id in list(self._history):
            async with self._locks.hold(student_id):
                records = self._history.get(student_id)
                if records is None:
                    continue
                kept = [r for r in records if r.published_at >= cutoff]
                dropped += len(records) - len(kept)
                if kept:
                    self._history[student_id] = kept
                else:
                    del self._history[student_id]
        return dropped

    def student_count(self) -> int:
        return len(self._history)


class ExpiryJob:
    ''' Runs NotificationStore.expire every `interval` seconds between start() and stop(). '''

    def __init__(self, store: NotificationStore, interval: float = TTL_CLEANUP_INTERVAL_SECONDS):
        self.store = store
        self.interval = interval
        self.task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    def start(self) -> None:
        if self.running:
            return
        self.task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self.task is None:
            return
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        self.task = None

    async def run_once(self) -> int:
        dropped = await self.store.expire()
        logger.debug("Expired %d notifications, %d students retained", dropped, self.store.student_count())
        return dropped

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception:
                # retried on the next period
                logger.exception("Notification expiry cycle failed")
