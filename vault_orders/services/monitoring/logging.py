"""
Structured JSON Logging with Correlation ID
Provides JSON formatter that automatically injects correlation IDs into all log entries
"""

import logging
import sys
import os
from pythonjsonlogger import jsonlogger
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = 'vault-orders'


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with automatic correlation ID injection.

    The correlation ID is read from the async context set by
    CorrelationIdMiddleware, so webhook and claim requests can be traced
    across log lines.
    """

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['correlation_id'] = correlation_id.get() or 'none'
        log_record['service'] = SERVICE_NAME
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


def setup_logging(level: int = logging.INFO):
    """
    Configure structured JSON logging to stdout.

    Installs one StreamHandler with CorrelationJsonFormatter on the root
    logger. Calling it again does not add a second handler.

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    root_logger = logging.getLogger()
    for existing in root_logger.handlers:
        if isinstance(existing.formatter, CorrelationJsonFormatter):
            return existing

    handler = logging.StreamHandler(sys.stdout)

    formatter = CorrelationJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    handler.setFormatter(formatter)

    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    return handler
