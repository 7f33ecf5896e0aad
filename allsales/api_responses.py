"""
API Response Utilities - Standardized envelopes for the JSON endpoints
"""

import logging

from flask import jsonify

logger = logging.getLogger(__name__)


# API Error Codes
class ErrorCode:
    SUCCESS = "SUCCESS"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


DEFAULT_MESSAGES = {
    ErrorCode.NOT_FOUND: "Resource not found",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred",
}


def success_response(data=None, message=None, status_code=200):
    """
    Standard success response format for API endpoints
    """
    response = {"code": ErrorCode.SUCCESS, "success": True}

    if data is not None:
        response["data"] = data

    if message:
        response["message"] = message

    return jsonify(response), status_code


def error_response(error_code=ErrorCode.INTERNAL_ERROR, message=None, details=None, status_code=400):
    """
    Standard error response format for API endpoints
    """
    response = {"code": error_code, "success": False, "message": message or DEFAULT_MESSAGES.get(error_code, "")}

    if details:
        response["details"] = details

    if error_code == ErrorCode.INTERNAL_ERROR:
        logger.error(f"{error_code}: {message} | Details: {details}")

    return jsonify(response), status_code


def paginated_response(result, extra=None):
    """
    Paginated list envelope. `result` is a {"items", "pagination"} dict from the search service.
    """
    pagination = dict(result["pagination"])
    pagination["has_more"] = pagination["page"] < pagination["total_pages"]
    pagination["next_page"] = pagination["page"] + 1 if pagination["has_more"] else None
    pagination["prev_page"] = pagination["page"] - 1 if pagination["page"] > 1 else None

    response = {
        "code": ErrorCode.SUCCESS,
        "success": True,
        "data": result["items"],
        "pagination": pagination,
    }
    if extra:
        response.update(extra)
    return jsonify(response), 200


def not_found_response(resource_type="Resource", resource_id=None):
    """
    Convenience function for not found errors
    """
    message = f"{resource_type} not found"
    if resource_id is not None:
        message += f": {resource_id}"
    return error_response(ErrorCode.NOT_FOUND, message=message, status_code=404)
