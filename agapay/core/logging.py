"""
Logging setup. Modules log through logging.getLogger(__name__).
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def init_logging(level: str = "INFO") -> None:
    """Configure the root logger once; repeated calls only adjust the level."""
    root = logging.getLogger()
    resolved = getattr(logging, (level or "INFO").upper(), logging.INFO)

    if not any(getattr(h, "_agapay", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._agapay = True
        root.addHandler(handler)

    root.setLevel(resolved)
    # Firebase/Google clients are chatty at INFO
    logging.getLogger("google").setLevel(max(resolved, logging.WARNING))
    logging.getLogger("urllib3").setLevel(max(resolved, logging.WARNING))
