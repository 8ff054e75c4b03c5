from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
NOISY_LOGGERS = ("matplotlib", "urllib3", "PIL")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # Third-party debug chatter drowns out per-search dedup and aggregation logs.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
