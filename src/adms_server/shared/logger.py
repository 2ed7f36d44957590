import logging
import os
import sys
from logging.handlers import RotatingFileHandler

LOG_DIR_NAME = "adms-server"
LOG_FILE_NAME = "adms.log"

FILE_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ColoredFormatter(logging.Formatter):
    """Console formatter: coloured level names and subsystem tags like [QUEUE]"""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    TAG_COLORS = {
        "[ADMS]": "\033[96m",
        "[QUEUE]": "\033[95m",
        "[SYNC]": "\033[94m",
        "[CRON]": "\033[34m",
        "[SSE]": "\033[90m",
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def format(self, record):
        text = super().format(record)

        color = self.LEVEL_COLORS.get(record.levelname)
        if color:
            text = text.replace(
                record.levelname, f"{color}{self.BOLD}{record.levelname}{self.RESET}", 1
            )

        for tag, tag_color in self.TAG_COLORS.items():
            if tag in text:
                text = text.replace(tag, f"{tag_color}{tag}{self.RESET}")
        return text


def get_log_dir():
    """Directory for the rotating log file; ADMS_LOG_DIR wins when set"""
    candidates = [os.getenv("ADMS_LOG_DIR")]
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA") or os.path.expanduser("~")
        candidates.append(os.path.join(base, LOG_DIR_NAME))
    else:
        candidates.append(os.path.join(os.path.expanduser("~"), ".local", "state", LOG_DIR_NAME))
        candidates.append(os.path.join("/tmp", LOG_DIR_NAME))

    for candidate in candidates:
        if not candidate:
            continue
        try:
            os.makedirs(candidate, exist_ok=True)
        except OSError:
            continue
        if os.access(candidate, os.W_OK):
            return candidate

    return os.getcwd()


def create_log_handler():
    """Rotating file handler, uncoloured; size from LOG_FILE_SIZE, 3 backups"""
    handler = RotatingFileHandler(
        os.path.join(get_log_dir(), LOG_FILE_NAME),
        maxBytes=int(os.getenv("LOG_FILE_SIZE", 10485760)),
        backupCount=3,
    )
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def create_console_handler():
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _configure(logger: logging.Logger) -> logging.Logger:
    # Reloads must not stack handlers
    if not logger.handlers:
        logger.addHandler(create_log_handler())
        logger.addHandler(create_console_handler())

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Child of the application logger for one component (queue, sync, adms...)"""
    return app_logger.getChild(name)


# Same name as the Flask app, so app.logger and app_logger share handlers
app_logger = _configure(logging.getLogger("adms_server"))
