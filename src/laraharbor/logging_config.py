"""
Logging configuration for LaraHarbor

Provides structured logging with both console output and file logging.
Container runtime and openssl output is directed to dedicated files in the
log directory.
"""

import logging
import logging.handlers
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


def setup_logging(
    log_dir: str = "logs",
    verbose: bool = False,
    log_level: Optional[str] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Set up logging for LaraHarbor operations.

    Args:
        log_dir: Directory for log files
        verbose: Enable verbose console output
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        enable_file_logging: Whether to write logs to files

    Returns:
        Configured logger instance
    """
    log_path = Path(log_dir)
    if enable_file_logging:
        log_path.mkdir(parents=True, exist_ok=True)
        (log_path / "fleet").mkdir(exist_ok=True)

    if log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Console output stays terse unless verbose; click.echo is the user channel
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level if verbose else max(level, logging.WARNING))
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if enable_file_logging:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_path / f"harbor_{timestamp}.log"

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,  # 10MB files, 5 backups
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logger = logging.getLogger("laraharbor")
    logger.debug(f"Logging initialized - Level: {logging.getLevelName(level)}")
    if enable_file_logging:
        logger.debug(f"Log directory: {log_path.absolute()}")

    return logger


def get_subprocess_log_file(operation: str, log_dir: str = "logs") -> str:
    """
    Generate timestamped log file path for subprocess operations.

    Args:
        operation: Operation name (e.g., 'compose_up', 'certificate')
        log_dir: Base log directory

    Returns:
        Full path to log file for subprocess output
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = Path(log_dir) / "fleet" / f"{operation}_{timestamp}.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return str(log_file)


def mask_sensitive_data(message: str) -> str:
    """
    Mask sensitive information in log messages.

    Args:
        message: Log message that may contain sensitive data

    Returns:
        Message with sensitive information masked
    """
    # KEY=value pairs whose key names a secret
    message = re.sub(
        r"\b([A-Z_]*(?:PASSWORD|PWD|SECRET)[A-Z_]*)=\S+",
        r"\1=***",
        message,
    )

    # mysql style -p<password>
    message = re.sub(r"(^|\s)-p(?!\s)\S+", r"\1-p***", message)

    message = re.sub(r"(--requirepass\s+)\S+", r"\1***", message)

    return message


class SubprocessLogHandler:
    """
    Handler for subprocess operations with dedicated logging.
    """

    def __init__(self, operation: str, log_dir: str = "logs"):
        """
        Initialize subprocess log handler.

        Args:
            operation: Name of the operation being logged
            log_dir: Base directory for log files
        """
        self.operation = operation
        self.log_file = get_subprocess_log_file(operation, log_dir)
        self.logger = logging.getLogger(f"laraharbor.subprocess.{operation}")

        handler = logging.FileHandler(self.log_file)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        self.logger.addHandler(handler)
        self.logger.setLevel(logging.DEBUG)

    def log_command(self, command: list) -> None:
        """Log the command being executed."""
        masked_command = [mask_sensitive_data(str(arg)) for arg in command]
        self.logger.info(f"Executing command: {' '.join(masked_command)}")

    def log_output(self, output: str, level: int = logging.INFO) -> None:
        """Log subprocess output."""
        if output and output.strip():
            self.logger.log(level, mask_sensitive_data(output.strip()))

    def log_completion(self, return_code: int, elapsed_time: float) -> None:
        """Log subprocess completion."""
        if return_code == 0:
            self.logger.info(
                f"✓ {self.operation} completed successfully in {elapsed_time:.2f}s"
            )
        else:
            self.logger.error(
                f"✗ {self.operation} failed with return code {return_code} after {elapsed_time:.2f}s"
            )

    def get_log_file_path(self) -> str:
        """Get the path to the log file for this operation."""
        return self.log_file


def configure_third_party_loggers() -> None:
    """Configure third-party library loggers to reduce noise."""
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


configure_third_party_loggers()
