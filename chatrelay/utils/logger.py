import logging
import os

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def default_log_dir():
    """Directory the file handler writes to.

    Uses CHATRELAY_LOG_DIR when set, otherwise ``chatrelay/logs``.
    """
    return os.environ.get(
        'CHATRELAY_LOG_DIR',
        os.path.join(os.path.dirname(os.path.dirname(__file__)), 'logs'),
    )


def setup_logger(name='chatrelay', log_dir=None):
    """Set up a logger with console and file output.

    Creates a logger that writes:
    - INFO and above to console
    - DEBUG and above to file (<log_dir>/server.log)

    Calling it again with the same name returns the already configured
    logger without stacking another pair of handlers.

    Args:
        name (str, optional): Logger name. Defaults to 'chatrelay'
        log_dir (str, optional): Directory for server.log. Defaults to
            default_log_dir()

    Returns:
        logging.Logger: Configured logger instance

    Side Effects:
        - Creates logs directory if it doesn't exist
        - Creates/appends to server.log file
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(LOG_FORMAT)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.INFO)
    logger.addHandler(console_handler)

    # File handler - ensure log directory exists
    log_dir = log_dir or default_log_dir()
    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, 'server.log'))
    except OSError as e:
        logger.warning(f"File logging disabled, cannot open {log_dir}: {e}")
    else:
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    return logger
