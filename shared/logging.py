import logging
import sys

from pythonjsonlogger import jsonlogger


def setup_logging(log_level: str = "INFO", service_name: str | None = None) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if root_logger.handlers:
        root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
        static_fields={"service": service_name} if service_name else {},
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Reduce noise from libraries
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "aiokafka"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
