import logging
import os

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_dir="logs", name="signin_sentry", level=logging.INFO):
    """Send the root logger to <log_dir>/<name>.log and the console.

    Safe to call more than once; handlers are only attached the first time
    for a given log file.
    """
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.abspath(os.path.join(log_dir, f"{name}.log"))

    # Root logger handles both file + console
    logger = logging.getLogger()
    logger.setLevel(level)

    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == log_file:
            return logger

    formatter = logging.Formatter(LOG_FORMAT)

    # File handler (persistent logs)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    # Console handler (visible in stdout)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    return logger
