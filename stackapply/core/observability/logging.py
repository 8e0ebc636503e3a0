from __future__ import annotations

import logging
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=lvl, format=_FORMAT)
    logging.getLogger("stackapply").setLevel(lvl)


def json_log(logger: logging.Logger, event: str, **fields) -> None:
    # Structured log in a single line
    msg = {"event": event, **fields}
    logger.info("%s", msg)
