import logging

from benefit_flow.config import get_settings

_LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process or the worker."""
    resolved = (level or get_settings().log_level).upper()
    logging.basicConfig(level=resolved, format=_LOG_FORMAT)
    logging.getLogger("benefit_flow").setLevel(resolved)
