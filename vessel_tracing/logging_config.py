import logging
import os
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level=logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """Attach console (and optional file) handlers to the package logger

    Args:
        level: Logging level for the package logger
        log_file: Optional path of a log file; its directory is created if needed

    Returns:
        The configured 'vessel_tracing' logger
    """
    logger = logging.getLogger('vessel_tracing')
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in logger.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(formatter)
        logger.addHandler(sh)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        # FileHandler stores the absolute path in baseFilename
        log_path = os.path.abspath(log_file)
        if not any(isinstance(h, logging.FileHandler) and h.baseFilename == log_path
                   for h in logger.handlers):
            fh = logging.FileHandler(log_file)
            fh.setLevel(logging.DEBUG)
            fh.setFormatter(formatter)
            logger.addHandler(fh)

    return logger
