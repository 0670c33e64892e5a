# priority_service/core/logging.py
import logging
import logging.handlers
import sys
from pathlib import Path

import structlog

from priority_service.core.config import Settings, get_settings


def setup_logging(settings: Settings = None):
    """Setup logging configuration"""
    settings = settings or get_settings()

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if settings.enable_structured_logging:
        # structlog renders the event as JSON already; the stdlib formatter only
        # needs to pass the message through.
        formatter = logging.Formatter("%(message)s")
    else:
        formatter = logging.Formatter(settings.log_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.log_file:
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / settings.log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.enable_structured_logging
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)

    structlog.get_logger(__name__).info(
        "Logging initialized",
        log_level=settings.log_level,
        structured_logging=settings.enable_structured_logging,
        log_file=settings.log_file,
    )


def log_model_training(user_id: str, model_version: int, duration_ms: float,
                       samples: int, **extra):
    """Log model training events"""
    logger = structlog.get_logger("priority.training")
    logger.info(
        "Model training completed",
        user_id=user_id,
        model_version=model_version,
        duration_ms=round(duration_ms, 2),
        samples=samples,
        **extra
    )
