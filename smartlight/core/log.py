import logging
from logging.handlers import RotatingFileHandler

_HANDLER_MARK = "_smartlight_handler"


def configure_logging(level: str = "INFO", log_file: str | None = "smartlight.log") -> None:
    logger = logging.getLogger()
    logger.setLevel(level.upper())

    # App restarts (tests, reload) must not stack handlers
    for h in list(logger.handlers):
        if getattr(h, _HANDLER_MARK, False):
            logger.removeHandler(h)
            h.close()

    fmt = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s - %(message)s"
    )

    # Console
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    setattr(ch, _HANDLER_MARK, True)
    logger.addHandler(ch)

    # Rotating file
    if log_file:
        fh = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5
        )
        fh.setFormatter(fmt)
        setattr(fh, _HANDLER_MARK, True)
        logger.addHandler(fh)

    # Silence noisy request logging
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
