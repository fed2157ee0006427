import logging

from backend.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
APP_LOGGERS = ("backend", "database")
_HANDLER_NAME = "expogate-console"


def setup_logging() -> None:
    level = getattr(logging, LOG_LEVEL, logging.INFO)
    for name in APP_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(level)

        # Avoid duplicate console handlers on reload
        if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
            handler = logging.StreamHandler()
            handler.set_name(_HANDLER_NAME)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)

        logger.propagate = False
