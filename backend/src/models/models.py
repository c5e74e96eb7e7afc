import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional

from utilities import CHANNEL_QUEUE_SIZE, now_utc, to_epoch_ms, to_iso

from .exceptions import ChannelClosedError

# queued after the last frame to wake and end the stream
_END_OF_STREAM = None


# ------------ In-memory structures ------------
@dataclass(frozen=True)
class GradeNotification:
    ''' One published grade event for one student. '''

    student_id: str
    assignment_id: str
    grade: float
    published_at: datetime
    teacher_comment: Optional[str] = None

    @property
    def id(self) -> str:
        return make_notification_id(self.student_id, self.assignment_id, self.published_at)

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "studentId": self.student_id,
            "assignmentId": self.assignment_id,
            "grade": self.grade,
        }
        if self.teacher_comment is not None:
            out["teacherComment"] = self.teacher_comment
        out["publishedAt"] = to_iso(self.published_at)
        return out


def make_notification_id(student_id: str, assignment_id: str, published_at: datetime) -> str:
    return f"{student_id}:{assignment_id}:{to_epoch_ms(published_at)}"


class Channel:
    ''' One open server-sent-events stream for a student. '''

    def __init__(self, student_id: str, queue_size: int = CHANNEL_QUEUE_SIZE):

        # initialize fields
        self.student_id = student_id
        self.opened_at = now_utc()
        self.last_activity = self.opened_at

        # encoded frames waiting to be streamed out
        # writers never wait: a full queue means the client stopped reading
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

        # periodic comment frame; cancelled when the channel closes
        self.keepalive_task: Optional[asyncio.Task] = None
        self.connected = True

    def write(self, frame: str) -> None:
        if not self.connected:
            raise ChannelClosedError(self.student_id)
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            raise ChannelClosedError(self.student_id, "not draining") from None
        self.last_activity = now_utc()

    def close(self) -> bool:
        '''
        Mark the channel closed and wake its stream. Safe to call any number
        of times; returns True only for the call that actually closed it.
        '''
        if not self.connected:
            return False
        self.connected = False
        if self.queue.full():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(_END_OF_STREAM)
        task = self.keepalive_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        return True

    async def frames(self) -> AsyncIterator[str]:
        ''' Yield queued frames until the channel is closed. '''
        while True:
            frame = await self.queue.get()
            if frame is _END_OF_STREAM:
                return
            yield frame
