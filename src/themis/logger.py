import logging

import notifiers.logging

from themis import config

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s - %(message)s"


def configure_logging(level=None) -> logging.Logger:
    logging.basicConfig(format=LOG_FORMAT, level=logging.INFO)
    if level is None:
        level = config.OVERRIDE_LOGGING
    logging.getLogger().setLevel(level)
    logger = logging.getLogger("themis")
    logger.setLevel(level)
    get_log_handlers(logger)
    return logger


def get_log_handlers(logger, level=logging.WARNING):
    # failures of background work (analysis, cache refresh) go to chat as well
    if config.TELEGRAM_TOKEN is None:
        return []
    handler = notifiers.logging.NotificationHandler(
        "telegram",
        defaults={
            "token": config.TELEGRAM_TOKEN,
            "chat_id": config.TELEGRAM_CHAT_ID,
        },
    )
    handler.setLevel(level)
    logger.addHandler(handler)
    return [handler]
