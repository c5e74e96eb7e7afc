from typing import Annotated, List, Optional, Union

from pydantic import AllowInfNan, BaseModel, Strict, StrictInt

# JSON numbers only: no booleans, no numeric strings, no NaN/Infinity
FiniteFloat = Annotated[float, Strict(), AllowInfNan(False)]


class PublishRequest(BaseModel):
    ''' Body of POST /grades/publish. Presence checks happen in the publication engine. '''

    studentId: Optional[str] = None
    studentIds: Optional[List[str]] = None
    assignmentId: Optional[str] = None
    grade: Optional[Union[StrictInt, FiniteFloat]] = None
    teacherComment: Optional[str] = None
