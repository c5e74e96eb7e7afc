from .constants import *  # noqa: F401,F403
from .config import Settings, get_settings
from .keyed_lock import KeyedLock
from .logging_config import setup_logging
from .utility_functions import (
    make_connected,
    make_error,
    make_sse_frame,
    make_too_many_connections,
    now_utc,
    parse_since,
    to_epoch_ms,
    to_iso,
)
