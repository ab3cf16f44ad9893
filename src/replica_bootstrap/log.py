"""
Colored console logging.
"""

import logging
import re
import sys

IP_PATTERN = re.compile(r'\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b')
QUIET_LOGGERS = (
    'urllib3',
    'docker.utils.config',
    'backoff',
    'pymongo',
    'pymongo.pool',
    'pymongo.topology',
    'pymongo.server',
)


# ANSI color codes for logging
class Colors:
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    MAGENTA = '\033[95m'
    CYAN = '\033[96m'
    WHITE = '\033[97m'
    BOLD = '\033[1m'
    RESET = '\033[0m'


class ColoredFormatter(logging.Formatter):
    """Colors level names, role names and IP addresses."""

    COLORS = {
        'DEBUG': Colors.CYAN,
        'INFO': Colors.GREEN,
        'WARNING': Colors.YELLOW,
        'ERROR': Colors.RED,
        'CRITICAL': Colors.RED + Colors.BOLD,
    }
    ROLES = {
        'PRIMARY': Colors.BOLD + Colors.MAGENTA,
        'SECONDARY': Colors.CYAN,
        'ARBITER': Colors.BLUE,
    }

    def format(self, record):
        level_color = self.COLORS.get(record.levelname, Colors.WHITE)
        message = super().format(record)
        message = message.replace(record.levelname, f"{level_color}{record.levelname}{Colors.RESET}", 1)

        for role, color in self.ROLES.items():
            if role in message:
                message = message.replace(role, f"{color}{role}{Colors.RESET}")
        message = message.replace("ReplicaSet", f"{Colors.BOLD}ReplicaSet{Colors.RESET}")

        return IP_PATTERN.sub(f"{Colors.YELLOW}\\g<0>{Colors.RESET}", message)


def setup_logging(debug=False, stream=None):
    """
    Route everything through one colored stdout handler.

    :param debug: DEBUG level instead of INFO.
    """
    formatter = ColoredFormatter(
        fmt='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Driver and HTTP noise only matters when troubleshooting them
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root_logger
