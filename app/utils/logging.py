"""
Structured logging with correlation IDs and performance tracking.
"""

import logging
import json
import uuid
import time
import traceback
from typing import Dict, Any, Optional
from contextvars import ContextVar
from functools import wraps
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import asyncio

# Context variables for request tracking
request_id_context: ContextVar[str] = ContextVar('request_id', default='')
user_id_context: ContextVar[str] = ContextVar('user_id', default='')
operation_context: ContextVar[str] = ContextVar('operation', default='')

SLOW_OPERATION_THRESHOLD_MS = 5000


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        request_id = request_id_context.get('')
        if request_id:
            log_entry['request_id'] = request_id

        user_id = user_id_context.get('')
        if user_id:
            log_entry['user_id'] = user_id

        operation = operation_context.get('')
        if operation:
            log_entry['operation'] = operation

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        if hasattr(record, 'duration'):
            log_entry['duration_ms'] = record.duration

        # Geospatial fields
        if hasattr(record, 'latitude'):
            log_entry['latitude'] = record.latitude

        if hasattr(record, 'longitude'):
            log_entry['longitude'] = record.longitude

        if hasattr(record, 'cache_key'):
            log_entry['cache_key'] = record.cache_key

        return json.dumps(log_entry, default=str)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request/response logging with correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request_id_context.set(request_id)

        user_id = request.headers.get('x-user-id')
        if user_id:
            user_id_context.set(user_id)

        start_time = time.time()

        logger = logging.getLogger('api.request')
        logger.info(
            f"{request.method} {request.url.path}",
            extra={
                'extra_fields': {
                    'method': request.method,
                    'path': request.url.path,
                    'query_params': dict(request.query_params),
                    'client_ip': request.client.host if request.client else None,
                }
            }
        )

        try:
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000

            logger.info(
                f"Response {response.status_code}",
                extra={
                    'extra_fields': {'status_code': response.status_code},
                    'duration': duration_ms
                }
            )

            response.headers['X-Request-ID'] = request_id
            return response

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {str(e)}",
                exc_info=True,
                extra={
                    'extra_fields': {'error_type': type(e).__name__},
                    'duration': duration_ms
                }
            )
            raise
        finally:
            request_id_context.set('')
            user_id_context.set('')
            operation_context.set('')


class GeospatialLogger:
    """Specialized logger for recommendation, availability and cache operations."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log_recommendation_request(
        self,
        user_id: str,
        latitude: float,
        longitude: float,
        results_count: int,
        total_available: int,
        duration_ms: float
    ):
        """Log recommendation requests."""
        operation_context.set("recommendation")

        self.logger.info(
            f"Recommendations served: {results_count} results",
            extra={
                'extra_fields': {
                    'user_id': user_id,
                    'latitude': latitude,
                    'longitude': longitude,
                    'results_count': results_count,
                    'total_available': total_available
                },
                'duration': duration_ms
            }
        )

    def log_availability_check(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float,
        minimum: int,
        has_enough: bool,
        count: int
    ):
        """Log place availability checks."""
        self.logger.info(
            f"Availability check: {count} places within {radius_meters:.0f}m",
            extra={
                'extra_fields': {
                    'latitude': latitude,
                    'longitude': longitude,
                    'radius_meters': radius_meters,
                    'minimum': minimum,
                    'has_enough': has_enough,
                    'count': count
                }
            }
        )

    def log_cache_operation(
        self,
        operation: str,
        cache_name: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log cache hit / miss / stale / save / clear / evict at debug level."""
        extra_fields = {'cache': cache_name, 'cache_operation': operation}
        if details:
            extra_fields.update(details)

        self.logger.debug(
            f"{cache_name} cache {operation}",
            extra={'extra_fields': extra_fields}
        )

    def log_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[Dict[str, Any]] = None
    ):
        """Log errors with full context."""
        operation_context.set(operation)

        extra_fields = {
            'operation': operation,
            'error_type': type(error).__name__,
            'error_message': str(error)
        }

        if context:
            extra_fields.update(context)

        self.logger.error(
            f"Operation failed: {operation}",
            exc_info=error,
            extra={'extra_fields': extra_fields}
        )

    def log_performance_warning(
        self,
        operation: str,
        duration_ms: float,
        threshold_ms: float,
        context: Optional[Dict[str, Any]] = None
    ):
        """Log performance warnings for slow operations."""
        extra_fields = {
            'operation': operation,
            'duration_ms': duration_ms,
            'threshold_ms': threshold_ms,
            'performance_issue': True
        }

        if context:
            extra_fields.update(context)

        self.logger.warning(
            f"Slow operation detected: {operation} took {duration_ms:.2f}ms",
            extra={'extra_fields': extra_fields}
        )


def log_operation(operation_name: str):
    """Decorator to time and log function operations."""

    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = GeospatialLogger(f"{func.__module__}.{func.__name__}")
            operation_context.set(operation_name)
            start_time = time.time()

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.log_error(e, operation_name, {'duration_ms': duration_ms})
                raise

            duration_ms = (time.time() - start_time) * 1000
            logger.logger.debug(
                f"Operation completed: {operation_name}",
                extra={
                    'extra_fields': {'operation': operation_name, 'success': True},
                    'duration': duration_ms
                }
            )
            if duration_ms > SLOW_OPERATION_THRESHOLD_MS:
                logger.log_performance_warning(operation_name, duration_ms, SLOW_OPERATION_THRESHOLD_MS)
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            logger = GeospatialLogger(f"{func.__module__}.{func.__name__}")
            operation_context.set(operation_name)
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.log_error(e, operation_name, {'duration_ms': duration_ms})
                raise

            duration_ms = (time.time() - start_time) * 1000
            logger.logger.debug(
                f"Operation completed: {operation_name}",
                extra={
                    'extra_fields': {'operation': operation_name, 'success': True},
                    'duration': duration_ms
                }
            )
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "structured",
    log_file: Optional[str] = None
):
    """Configure application logging."""
    level = getattr(logging, log_level.upper())

    if log_format == "structured":
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger('uvicorn').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('celery').setLevel(logging.WARNING)


# Global logger instances
recommendation_logger = GeospatialLogger('recommendations')
cache_logger = GeospatialLogger('cache')
