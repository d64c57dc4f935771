import logging
from logging.handlers import RotatingFileHandler
import os


# Configure the logger
def setup_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    log_dir: str = "logs",
) -> logging.Logger:
    """
    Sets up a logger with a specified name, log file, and logging level.
    This function configures a logger to write log messages to both a rotating file
    and the console. The log messages will include the timestamp, logger name,
    log level, and message.

    Calling it twice for the same name does not attach duplicate handlers.

    Args:
        name (str): The name of the logger.
        log_file (str): The file name (inside log_dir) the messages will be written to.
        level (int, optional): The logging level (e.g., logging.INFO, logging.DEBUG). Defaults to logging.INFO.
        log_dir (str, optional): Directory holding the log files. Defaults to "logs".

    Returns:
        logging.Logger: The configured logger instance.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    # Define the log format
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    handlers = []
    # File handler (with rotation)
    os.makedirs(log_dir, exist_ok=True)
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, log_file),
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    handlers.append(file_handler)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    # Add handlers to the logger
    for handler in handlers:
        logger.addHandler(handler)

    return logger
