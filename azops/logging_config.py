"""Structured JSON result lines for --json output.

structlog renders one JSON object per procedure run on stdout, apart from the
colorlog console log that config_manager.setup_logging installs.
"""

import logging
from typing import Any, Dict

import structlog

RESULT_LOGGER_NAME = "azops.results"


def configure_result_logging(level: int = logging.INFO) -> None:
    """Route procedure results through structlog as one JSON object per line."""
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )


def emit_result(event: str, payload: Dict[str, Any], failed: bool = False) -> None:
    """Emit a structured result record for machine consumers (CI pipelines)."""
    result_logger = structlog.get_logger(RESULT_LOGGER_NAME)
    if failed:
        result_logger.error(event, **payload)
    else:
        result_logger.info(event, **payload)
