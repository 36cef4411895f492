import logging
import os

def setup_logger(name: str = "AutoTrader", level: int | str | None = None) -> logging.Logger:
    LOG_FMT = "%(asctime)s │ %(levelname)-7s │ %(message)s"
    if level is None:
        level = os.environ.get("AT_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format=LOG_FMT, datefmt="%H:%M:%S")
    return logging.getLogger(name)

log = setup_logger()
