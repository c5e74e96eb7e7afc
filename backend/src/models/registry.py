import asyncio
import logging
from datetime import timedelta
from typing import Dict, Set

from utilities import KEEPALIVE_FRAME, MAX_CONNECTIONS_PER_STUDENT, KeyedLock, now_utc

from .exceptions import ChannelClosedError
from .models import Channel

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    '''
    Open channels per student.

    Every mutation of a student's set runs under that student's lock, and a
    student whose last channel goes away is dropped from the mapping.
    '''

    def __init__(self, max_per_student: int = MAX_CONNECTIONS_PER_STUDENT):
        self.max_per_student = max_per_student
        self._channels: Dict[str, Set[Channel]] = {}
        self._locks = KeyedLock()

    async def register(self, student_id: str, channel: Channel) -> bool:
        ''' Admit the channel unless the student is already at the limit. '''
        async with self._locks.hold(student_id):
            channels = self._channels.get(student_id)
            if channels is not None and len(channels) >= self.max_per_student:
                return False
            if channels is None:
                channels = set()
                self._channels[student_id] = channels
            channels.add(channel)
        return True

    async def deregister(self, student_id: str, channel: Channel) -> bool:
        '''
        Remove and close the channel. Idempotent: disconnect handling and
        write-failure cleanup may both call it for the same channel.
        '''
        async with self._locks.hold(student_id):
            channels = self._channels.get(student_id)
            removed = channels is not None and channel in channels
            if removed:
                channels.discard(channel)
                if not channels:
                    del self._channels[student_id]
        channel.close()
        return removed

    async def fanout(self, student_id: str, frame: str) -> int:
        ''' Write the frame to every open channel of the student; returns successful writes. '''
        async with self._locks.hold(student_id):
            channels = list(self._channels.get(student_id, ()))

        # writes happen outside the lock
        delivered = 0
        dead = []
        for channel in channels:
            try:
                channel.write(frame)
                delivered += 1
            except ChannelClosedError as exc:
                logger.warning("Failed to write notification to %s (%s); evicting", student_id, exc.reason)
                dead.append(channel)
        for channel in dead:
            await self.deregister(student_id, channel)
        return delivered

    async def active_count(self, student_id: str) -> int:
        async with self._locks.hold(student_id):
            return len(self._channels.get(student_id, ()))

    def total_count(self) -> int:
        return sum(len(c) for c in self._channels.values())

    def student_count(self) -> int:
        return len(self._channels)

    async def keepalive(self, channel: Channel, interval: float) -> None:
        '''
        Background task per channel: write a comment frame once the stream has
        been idle for `interval` seconds. A failed write evicts the channel like a failed fanout.
        '''
        try:
            while channel.connected:
                await asyncio.sleep(interval)
                # a frame went out recently, the stream is not idle
                if now_utc() - channel.last_activity < timedelta(seconds=interval):
                    continue
                try:
                    channel.write(KEEPALIVE_FRAME)
                except ChannelClosedError as exc:
                    if channel.connected:
                        logger.warning("Keep-alive write failed for %s (%s)", channel.student_id, exc.reason)
                    await self.deregister(channel.student_id, channel)
                    return
        except asyncio.CancelledError:
            # channel closed elsewhere
            pass

    async def close_all(self) -> int:
        ''' Close every registered channel (server shutdown). '''
        closed = 0
        for student_id in list(self._channels):
            async with self._locks.hold(student_id):
                channels = self._channels.pop(student_id, set())
            for channel in channels:
                if channel.close():
                    closed += 1
        return closed
