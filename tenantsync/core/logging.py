from __future__ import annotations

import logging

from tenantsync.core.config import DEV_ENCRYPTION_SECRET, get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Configure the root logger once; repeated calls only adjust the level.
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    root.setLevel(level)
    # httpx logs every request at INFO, which would echo tenant endpoints.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    if settings.credential_encryption_secret == DEV_ENCRYPTION_SECRET:
        logging.getLogger(__name__).warning("credential_encryption_secret_is_dev_default")
