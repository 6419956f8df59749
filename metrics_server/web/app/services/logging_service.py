"""
Logging Service for the metrics engine.
Provides structured JSON logging with request correlation IDs.
"""

import json
import logging
import logging.config
import sys
import time
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Any, Optional

# Context variables for request correlation
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message',
}


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if request_id_var.get():
            log_data['request_id'] = request_id_var.get()

        if user_id_var.get():
            log_data['user_id'] = user_id_var.get()

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_data['extra'] = extra_fields

        return json.dumps(log_data, default=str, ensure_ascii=False)


class MetricsLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds request context and step logging"""

    def __init__(self, logger: logging.Logger, extra: Dict[str, Any] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get('extra') or {})
        if self.extra:
            extra.update(self.extra)
        if request_id_var.get():
            extra['request_id'] = request_id_var.get()
        if user_id_var.get():
            extra['user_id'] = user_id_var.get()
        kwargs['extra'] = extra
        return msg, kwargs

    def log_step(self, step: str, level: int = logging.INFO, **details):
        """Log one step of a metrics run with its details as structured fields"""
        self.log(level, step, extra={'event_type': 'metrics_step', 'step': step, **details})

    def log_api_request(self, method: str, endpoint: str, status_code: int,
                        duration_ms: float, **kwargs):
        """Log API request events"""
        extra = {
            'event_type': 'api_request',
            'method': method,
            'endpoint': endpoint,
            'status_code': status_code,
            'duration_ms': duration_ms,
            **kwargs
        }
        self.info(f"{method} {endpoint} - {status_code} ({duration_ms}ms)", extra=extra)


def setup_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Install the logging configuration for the service"""
    config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {
                '()': JSONFormatter,
            },
            'simple': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'level': level,
                'formatter': 'json' if json_output else 'simple',
                'stream': sys.stdout
            },
        },
        'loggers': {
            'metrics_engine': {
                'level': level,
                'handlers': ['console'],
                'propagate': False
            },
            'uvicorn': {
                'level': 'INFO',
                'handlers': ['console'],
                'propagate': False
            },
            'sqlalchemy': {
                'level': 'WARNING',
                'handlers': ['console'],
                'propagate': False
            },
            'httpx': {
                'level': 'WARNING',
                'handlers': ['console'],
                'propagate': False
            }
        },
        'root': {
            'level': level,
            'handlers': ['console']
        }
    }

    logging.config.dictConfig(config)


_loggers: Dict[str, MetricsLoggerAdapter] = {}


def get_logger(name: str, extra: Dict[str, Any] = None) -> MetricsLoggerAdapter:
    """Get a logger for the given component"""
    if name not in _loggers:
        _loggers[name] = MetricsLoggerAdapter(logging.getLogger(f"metrics_engine.{name}"), extra)
    return _loggers[name]


def set_request_context(request_id: str, user_id: str = None):
    request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)


def clear_request_context():
    request_id_var.set(None)
    user_id_var.set(None)


class LoggingMiddleware:
    """ASGI middleware for request/response logging"""

    def __init__(self, app):
        self.app = app
        self.logger = get_logger("api")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        start_time = time.time()

        set_request_context(request_id)
        scope["request_id"] = request_id

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                duration_ms = round((time.time() - start_time) * 1000, 2)
                self.logger.log_api_request(
                    method=scope["method"],
                    endpoint=scope["path"],
                    status_code=message["status"],
                    duration_ms=duration_ms,
                )
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()
