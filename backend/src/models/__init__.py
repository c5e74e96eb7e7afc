from .exceptions import ChannelClosedError, PublishValidationError
from .models import Channel, GradeNotification, make_notification_id
from .publisher import PublicationEngine, PublishResult, resolve_targets
from .registry import ConnectionRegistry
from .store import ExpiryJob, NotificationStore
