# ------------ Config ------------
MAX_CONNECTIONS_PER_STUDENT = 3          # open streams allowed per student
MISSED_TTL_SECONDS = 24 * 60 * 60        # keep history for 24 hours
TTL_CLEANUP_INTERVAL_SECONDS = 5 * 60    # expiry job period
KEEPALIVE_INTERVAL_SECONDS = 20          # comment frame on every open stream
CHANNEL_QUEUE_SIZE = 100                 # pending frames before a channel counts as dead
DEFAULT_PORT = 2022
# --------------------------------

KEEPALIVE_FRAME = ": keepalive\n\n"
