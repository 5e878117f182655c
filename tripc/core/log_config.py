import logging

from tripc.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # one line per request is too chatty at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
