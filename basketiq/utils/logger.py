import logging
import sys

# ======================================================================================
#  Standard Logger
# ======================================================================================

def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Return a logger that writes to stdout with the project-wide format.

    Repeated calls for the same name reuse the existing stdout handler instead of
    stacking a new one, so module-level ``logger = get_logger(__name__)`` is safe on
    re-import.

    Args:
        name (str): The name of the logger.
        level (int, optional): The logging level. Defaults to logging.INFO.

    Returns:
        logging.Logger: The configured logger instance.
    """

    logger = logging.getLogger(name)
    logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    handler = None
    for existing_handler in logger.handlers:
        if isinstance(existing_handler, logging.StreamHandler) and getattr(existing_handler, "stream", None) is sys.stdout:
            handler = existing_handler
            break

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        logger.addHandler(handler)

    handler.setFormatter(formatter)

    return logger


def resolve_level(name: str | None, default: int = logging.INFO) -> int:
    """Map a config string such as ``"debug"`` to a logging level constant."""
    if not name:
        return default
    value = logging.getLevelName(str(name).strip().upper())
    return value if isinstance(value, int) else default


def set_package_level(level: int, prefix: str = "basketiq") -> None:
    """Apply ``level`` to every logger already created under ``prefix``."""
    for name in list(logging.Logger.manager.loggerDict):
        if name == prefix or name.startswith(prefix + "."):
            logging.getLogger(name).setLevel(level)
