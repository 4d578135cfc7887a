import logging
import sys

from src.config import settings

_HANDLER_NAME = "engine-stdout"


def configure_logging(level: str = None):
    """Configure logging for the application. Safe to call more than once."""
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())
    if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    handler.setFormatter(formatter)
    root.addHandler(handler)
    # ccxt and httpx are chatty at INFO
    logging.getLogger("ccxt").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

# Make sure the function is available for import
__all__ = ['configure_logging']
