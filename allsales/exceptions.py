"""
AllSales - Custom Exceptions and Exception Handlers
"""
import structlog
from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

logger = structlog.get_logger('exceptions')


class AllSalesException(Exception):
    """Base exception for AllSales"""
    status_code = 400

    def __init__(self, message: str, code: str = "ALLSALES_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)

    def to_dict(self):
        return {
            'code': self.code,
            'success': False,
            'message': self.message
        }


class UpstreamError(AllSalesException):
    """The Steam API failed or answered with something unusable"""
    status_code = 502

    def __init__(self, message: str, http_status: int = None, code: str = "UPSTREAM_ERROR"):
        self.http_status = http_status
        super().__init__(message, code=code)

    @property
    def is_transient(self):
        if self.http_status is None:
            return True
        return self.http_status == 429 or self.http_status >= 500


class RateLimitedError(UpstreamError):
    """HTTP 429 from the Steam API"""

    def __init__(self, message: str = "Rate limited by upstream"):
        super().__init__(message, http_status=429, code="RATE_LIMITED")


class DatabaseException(AllSalesException):
    """Database-related exceptions"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message, code="DATABASE_ERROR")
        logger.error(f"Database error: {message}")


class ValidationException(AllSalesException):
    """Validation-related exceptions"""

    def __init__(self, message: str):
        super().__init__(message, code="VALIDATION_ERROR")
        logger.warning(f"Validation error: {message}")


class RunInProgressError(AllSalesException):
    """A reconciliation run is already executing"""
    status_code = 409

    def __init__(self, message: str = "A catalog update is already running"):
        super().__init__(message, code="RUN_IN_PROGRESS")


def register_exception_handlers(app):
    """Register exception handlers with Flask app"""

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        """Handle HTTP exceptions"""
        return jsonify({
            'code': e.name.upper().replace(' ', '_'),
            'success': False,
            'message': e.description
        }), e.code

    @app.errorhandler(AllSalesException)
    def handle_allsales_exception(e):
        """Handle AllSales custom exceptions, subclasses carry their status"""
        if isinstance(e, UpstreamError):
            logger.error(f"Upstream error: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_exception(e):
        """Roll back the request session and answer with a database error"""
        from allsales.db import db

        db.session.rollback()
        logger.error(f"Database failure: {e}", exc_info=True)
        error = DatabaseException("Database operation failed")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(Exception)
    def handle_generic_exception(e):
        """Handle all other exceptions"""
        logger.error(f"Unhandled exception: {e}", exc_info=True)
        return jsonify({
            'code': 'INTERNAL_ERROR',
            'success': False,
            'message': 'An unexpected error occurred'
        }), 500
