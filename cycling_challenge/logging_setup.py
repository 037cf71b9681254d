import logging
import sys

from .config import LOG_LEVEL


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Configura el logging raíz (stderr) según LOG_LEVEL."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def token_tail(token: str | None) -> str:
    """Sólo los últimos 6 caracteres de un token, para logs."""
    if not token:
        return "-"
    return "..." + token[-6:]
