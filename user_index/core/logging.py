import logging

from user_index.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s: [%(filename)s:%(lineno)d] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_HANDLER_NAME = "user_index.console"


def configure_logging(settings: Settings) -> None:
    """
    Install the console handler on the root logger.

    Development runs at DEBUG, everything else at INFO unless
    ``settings.log_level`` says otherwise. Test mode disables logging.
    Safe to call more than once.
    """
    root = logging.getLogger()

    if settings.env_mode == "test":
        logging.disable(logging.CRITICAL)
        return
    logging.disable(logging.NOTSET)

    if settings.log_level:
        level = settings.log_level.upper()
    elif settings.env_mode == "development":
        level = "DEBUG"
    else:
        level = "INFO"
    root.setLevel(level)

    if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
