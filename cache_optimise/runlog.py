"""Run log wiring.

With ``write_log`` on, every message of the ``cache_optimise`` logger tree is
appended to the status file for the whole invocation. With it off, the status
file only holds the Unix time of the last run.
"""

import logging
import time
from typing import Optional

from cache_optimise.config import OptimiseSettings

LOGGER_NAME = "cache_optimise"
LOG_FORMAT = "%(asctime)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_run_log(settings: OptimiseSettings) -> Optional[logging.Handler]:
    """Attach the run log handler, or stamp the status file when logging is off.

    Returns the handler so the caller can detach it when the run ends.
    """
    root = logging.getLogger(LOGGER_NAME)
    status_file = settings.status_file
    status_file.parent.mkdir(parents=True, exist_ok=True)

    if not settings.write_log:
        status_file.write_text(str(int(time.time())), encoding="utf8")
        return None

    handler = logging.FileHandler(status_file, mode="a", encoding="utf8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    root.addHandler(handler)
    if root.level == logging.NOTSET or root.level > handler.level:
        root.setLevel(handler.level)
    return handler


def close_run_log(handler: Optional[logging.Handler]) -> None:
    if handler is None:
        return
    logging.getLogger(LOGGER_NAME).removeHandler(handler)
    handler.close()
