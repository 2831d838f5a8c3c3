from __future__ import annotations

import logging

from cmsstore.core.config import get_settings


_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Scripts call this once; library code only uses module loggers.
    resolved = (level or get_settings().log_level).upper()
    logging.basicConfig(level=resolved, format=_FORMAT)
    logging.getLogger("cmsstore").setLevel(resolved)
