import logging
from logging.config import dictConfig


def configure_logging(level: str = "INFO") -> None:
    """Route every logger through a single rich console handler."""
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "rich": {"format": "%(name)s: %(message)s", "datefmt": "[%X]"}
            },
            "handlers": {
                "console": {
                    "class": "rich.logging.RichHandler",
                    "formatter": "rich",
                    "level": level.upper(),
                    "show_path": False,
                    "rich_tracebacks": True,
                }
            },
            "loggers": {
                "": {"handlers": ["console"], "level": level.upper()},
                # pdfminer is chatty at INFO
                "pdfminer": {"level": "WARNING"},
            },
        }
    )
    logging.captureWarnings(True)
