import logging
import sys

from .constants import LOG_FORMAT


class LoggerSetup:
    def __init__(self, log_format: str = LOG_FORMAT, level: str = "INFO"):
        self.log_format = log_format
        self.level = level
        self.setup_logging()

    def setup_logging(self) -> None:
        """Setup logging configuration on the root logger."""
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.getLevelName(self.level.upper()))
        if not root_logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            formatter = logging.Formatter(self.log_format)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)
        # botocore is noisy at DEBUG
        logging.getLogger("botocore").setLevel(logging.WARNING)

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name) if name else logging.getLogger()
