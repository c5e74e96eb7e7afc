import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List

from schemas import PublishRequest
from utilities import make_sse_frame, now_utc

from .exceptions import PublishValidationError
from .models import GradeNotification
from .registry import ConnectionRegistry
from .store import NotificationStore

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    stored: int
    sent: int


def resolve_targets(request: PublishRequest) -> List[str]:
    '''
    Validate a publish request and return its target students in request order.
    Raises PublishValidationError before anything is stored.
    '''
    if not request.assignmentId:
        raise PublishValidationError("Missing assignmentId")
    if request.grade is None:
        raise PublishValidationError("Missing grade")
    if request.studentIds is not None:
        if len(request.studentIds) == 0:
            raise PublishValidationError("studentIds must not be empty")
        if any(not s for s in request.studentIds):
            raise PublishValidationError("studentIds must not contain empty ids")
        return list(request.studentIds)
    if request.studentId:
        return [request.studentId]
    raise PublishValidationError("Missing studentId or studentIds")


class PublicationEngine:
    ''' Stores each published grade and pushes it to the student's open channels. '''

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: NotificationStore,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.registry = registry
        self.store = store
        self.clock = clock

    async def publish(self, request: PublishRequest) -> PublishResult:
        targets = resolve_targets(request)

        # one timestamp for the whole batch, so a repeated student id
        # produces the same notification id and is skipped
        published_at = self.clock()
        seen = set()
        result = PublishResult(stored=0, sent=0)
        for student_id in targets:
            record = GradeNotification(
                student_id=student_id,
                assignment_id=request.assignmentId,
                grade=request.grade,
                published_at=published_at,
                teacher_comment=request.teacherComment,
            )
            if record.id in seen:
                continue
            seen.add(record.id)

            # 1. history for students who are offline
            await self.store.append(record)
            result.stored += 1

            # 2. live push to whatever is connected right now
            result.sent += await self.registry.fanout(student_id, make_sse_frame(record.to_dict()))

        logger.info(
            "Published %s to %d students (stored=%d, sent=%d)",
            request.assignmentId, len(seen), result.stored, result.sent,
        )
        return result
