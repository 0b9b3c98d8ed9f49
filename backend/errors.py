"""
Custom error classes and error handling utilities for the Quote Hub API
"""

from flask import jsonify
import logging

# Set up logger
logger = logging.getLogger(__name__)


class QuoteHubError(Exception):
    """Base exception class for the Quote Hub application"""

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class ValidationError(QuoteHubError):
    """Raised when input validation fails"""

    def __init__(self, message, field=None):
        super().__init__(message, 400, {'field': field} if field else None)


class NotFoundError(QuoteHubError):
    """Raised when a requested resource is not found"""

    def __init__(self, resource_type, resource_id=None):
        message = f"{resource_type} not found"
        if resource_id:
            message += f" with id {resource_id}"
        super().__init__(message, 404)


class ConflictError(QuoteHubError):
    """Raised when an operation would result in a conflict"""

    def __init__(self, message):
        super().__init__(message, 409)


class BusinessLogicError(QuoteHubError):
    """Raised when business logic constraints are violated"""

    def __init__(self, message):
        super().__init__(message, 422)  # Unprocessable Entity


class PersistenceError(QuoteHubError):
    """Raised when the storage adapter fails to read or write a value"""

    def __init__(self, message="Storage operation failed", key=None):
        super().__init__(message, 503, {'key': key} if key else None)


def register_error_handlers(app):
    """Register error handlers with the Flask app"""

    @app.errorhandler(QuoteHubError)
    def handle_quote_hub_error(error):
        """Handle custom Quote Hub errors"""
        logger.warning(f"Quote Hub Error: {error.message}", extra={
            'status_code': error.status_code,
            'payload': error.payload
        })

        response = {
            'error': {
                'type': error.__class__.__name__,
                'message': error.message
            }
        }

        if error.payload:
            response['error']['details'] = error.payload

        return jsonify(response), error.status_code

    @app.errorhandler(400)
    def handle_bad_request(error):
        """Handle 400 Bad Request errors"""
        logger.warning(f"Bad Request: {error.description}")
        return jsonify({
            'error': {
                'type': 'BadRequest',
                'message': error.description or 'Bad request'
            }
        }), 400

    @app.errorhandler(404)
    def handle_not_found(error):
        """Handle 404 Not Found errors"""
        logger.info(f"Not Found: {error.description}")
        return jsonify({
            'error': {
                'type': 'NotFound',
                'message': error.description or 'Resource not found'
            }
        }), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        """Handle 405 Method Not Allowed errors"""
        logger.warning(f"Method Not Allowed: {error.description}")
        return jsonify({
            'error': {
                'type': 'MethodNotAllowed',
                'message': 'Method not allowed for this endpoint'
            }
        }), 405

    @app.errorhandler(422)
    def handle_unprocessable_entity(error):
        """Handle 422 Unprocessable Entity errors"""
        logger.warning(f"Unprocessable Entity: {error.description}")
        return jsonify({
            'error': {
                'type': 'UnprocessableEntity',
                'message': error.description or 'Unprocessable entity'
            }
        }), 422

    @app.errorhandler(500)
    def handle_internal_server_error(error):
        """Handle 500 Internal Server Error"""
        logger.error(f"Internal Server Error: {error.description}", exc_info=True)
        return jsonify({
            'error': {
                'type': 'InternalServerError',
                'message': 'An unexpected error occurred. Please try again later.'
            }
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """Handle unexpected errors"""
        logger.error(f"Unexpected Error: {str(error)}", exc_info=True)
        return jsonify({
            'error': {
                'type': 'UnexpectedError',
                'message': 'An unexpected error occurred. Please contact support if this persists.'
            }
        }), 500


def validate_required(data, fields):
    """Validate that required fields are present in data"""
    missing = []
    for field in fields:
        if field not in data or data[field] is None or (isinstance(data[field], str) and data[field].strip() == ''):
            missing.append(field)

    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def validate_date_range(start_date, end_date, start_field="startDate", end_field="endDate"):
    """Validate date range logic"""
    if start_date and end_date:
        if start_date >= end_date:
            raise ValidationError(f"{end_field} must be after {start_field}")


def validate_positive_number(value, field_name):
    """Validate that a value is a positive number"""
    try:
        num = float(value)
    except (ValueError, TypeError):
        raise ValidationError(f"{field_name} must be a valid number", field_name)
    if num <= 0:
        raise ValidationError(f"{field_name} must be a positive number", field_name)


def validate_enum(value, allowed_values, field_name):
    """Validate that a value is in an allowed set"""
    if value not in allowed_values:
        allowed = ', '.join(str(v) for v in allowed_values)
        raise ValidationError(f"{field_name} must be one of: {allowed}", field_name)


def validate_allocation(value, allowed=None, field_name='allocation'):
    """Validate an allocation percentage, optionally against a fixed set of steps"""
    if allowed is not None:
        validate_enum(value, allowed, field_name)
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0 or value > 100:
        raise ValidationError(f"{field_name} must be a percentage between 1 and 100", field_name)


def validate_duration(value, field_name='duration'):
    """Validate a stage duration in whole weeks (1-52)"""
    if isinstance(value, bool) or not isinstance(value, int) or value < 1 or value > 52:
        raise ValidationError(f"{field_name} must be a whole number of weeks between 1 and 52", field_name)


def safe_storage_operation(operation_func, error_message="Storage operation failed", key=None):
    """Run a storage adapter call, converting any failure into a PersistenceError"""
    try:
        return operation_func()
    except PersistenceError:
        raise
    except Exception as e:
        logger.error(f"Storage operation failed: {str(e)}")
        raise PersistenceError(error_message, key) from e


def log_api_request(endpoint, method, **kwargs):
    """Log API requests for auditing"""
    logger.info(f"API Request: {method} {endpoint}", extra={
        'method': method,
        'endpoint': endpoint,
        **kwargs
    })
