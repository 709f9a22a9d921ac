import logging
import sys
import os
from logging.handlers import RotatingFileHandler

# Log directory defaults to ./logs under the working directory
LOGS_DIR = os.getenv("CLASSWORLD_LOG_DIR", os.path.join(os.getcwd(), "logs"))
LOG_LEVEL = os.getenv("CLASSWORLD_LOG_LEVEL", "INFO").upper()

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class WorldConsoleFormatter(logging.Formatter):
    """Colours the level tag on the console; tick and grant lines stay readable in a terminal"""

    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[36;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def __init__(self):
        super().__init__(PLAIN_FORMAT + " (%(module)s:%(lineno)d)", datefmt=DATE_FORMAT)

    def format(self, record):
        line = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None or not sys.stdout.isatty():
            return line
        return f"{color}{line}{self.RESET}"


def _file_handler() -> logging.Handler:
    os.makedirs(LOGS_DIR, exist_ok=True)
    handler = RotatingFileHandler(
        os.path.join(LOGS_DIR, "world.log"),
        maxBytes=5*1024*1024,
        backupCount=5,
        encoding='utf-8'
    )
    handler.set_name("classworld-file")
    handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logger(name: str = "classworld", level: str = LOG_LEVEL) -> logging.Logger:
    """Configures the service logger; child loggers (classworld.cadence, ...) inherit its handlers"""

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.set_name("classworld-console")
    console_handler.setFormatter(WorldConsoleFormatter())
    logger.addHandler(console_handler)

    try:
        logger.addHandler(_file_handler())
    except OSError:
        logger.warning("File logging disabled, cannot write to %s", LOGS_DIR)

    return logger


# Global logger instance
logger = setup_logger()
