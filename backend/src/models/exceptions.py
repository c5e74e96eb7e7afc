class ChannelClosedError(Exception):
    '''Raised when writing to a channel that is closed or no longer draining.'''

    def __init__(self, student_id: str, reason: str = "closed"):
        super().__init__(f"channel for {student_id} is {reason}")
        self.student_id = student_id
        self.reason = reason


class PublishValidationError(ValueError):
    '''A publish request that cannot be accepted; the message is returned to the caller.'''
