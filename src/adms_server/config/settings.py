import os


def strtobool(val):
    """Convert a string representation of truth to true (1) or false (0)."""
    val = val.lower()
    if val in ('y', 'yes', 't', 'true', 'on', '1'):
        return 1
    elif val in ('n', 'no', 'f', 'false', 'off', '0'):
        return 0
    else:
        raise ValueError(f"invalid truth value {val!r}")


SECRET_KEY = os.getenv("SECRET_KEY", "default-secret-key-for-adms-server")
DEBUG = bool(strtobool(os.getenv("FLASK_DEBUG", "false")))

LOG_FILE_SIZE = os.getenv("LOG_FILE_SIZE", "10485760")
SENTRY_DSN = os.getenv("SENTRY_DSN", "")

# Handshake options pushed to terminals
HEARTBEAT_DELAY = int(os.getenv("HEARTBEAT_DELAY", "30"))
ERROR_DELAY = int(os.getenv("ERROR_DELAY", "60"))
TRANS_TIMES = os.getenv("TRANS_TIMES", "00:00;14:05")
TRANS_INTERVAL = int(os.getenv("TRANS_INTERVAL", "1"))
REALTIME = int(os.getenv("REALTIME", "1"))

# Command queue
COMMAND_MAX_RETRIES = int(os.getenv("COMMAND_MAX_RETRIES", "3"))
RETRY_BASE_SECONDS = int(os.getenv("RETRY_BASE_SECONDS", "30"))
RETRY_SWEEP_SECONDS = int(os.getenv("RETRY_SWEEP_SECONDS", "30"))
COMMAND_RETENTION_DAYS = int(os.getenv("COMMAND_RETENTION_DAYS", "30"))
SENT_TIMEOUT_MINUTES = int(os.getenv("SENT_TIMEOUT_MINUTES", "10"))

# Device registry
OFFLINE_AFTER_MINUTES = int(os.getenv("OFFLINE_AFTER_MINUTES", "15"))
SSE_HEARTBEAT_SECONDS = int(os.getenv("SSE_HEARTBEAT_SECONDS", "30"))

# Template synchronization
USERINFO_DEDUP_SECONDS = int(os.getenv("USERINFO_DEDUP_SECONDS", "120"))
DEFAULT_FACE_MAJOR_VER = int(os.getenv("DEFAULT_FACE_MAJOR_VER", "40"))
DEFAULT_FACE_MINOR_VER = int(os.getenv("DEFAULT_FACE_MINOR_VER", "1"))
MIN_TEMPLATE_LENGTH = int(os.getenv("MIN_TEMPLATE_LENGTH", "100"))
FANOUT_MODE = os.getenv("FANOUT_MODE", "thread")  # 'thread' or 'inline'
FACE_ALWAYS_RESYNC = bool(strtobool(os.getenv("FACE_ALWAYS_RESYNC", "false")))

SCHEDULER_ENABLED = bool(strtobool(os.getenv("SCHEDULER_ENABLED", "true")))
