"""Typed API failures and the JSON error envelope.

Services raise these before touching the database so a rejected request
never leaves a partial write behind. REST routes let them propagate to the
handlers registered here; socket handlers turn them into acknowledgements.
"""

from flask import jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    status_code = 500
    default_message = 'Internal server error'

    def __init__(self, message=None, details=None, code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details
        self.code = code

    def to_dict(self):
        body = {'message': self.message}
        if self.details:
            body['details'] = self.details
        if self.code:
            body['code'] = self.code
        return body


class ValidationError(ApiError):
    status_code = 422
    default_message = 'Validation failed'


class UnauthorizedError(ApiError):
    status_code = 401
    default_message = 'Unauthorized'


class ForbiddenError(ApiError):
    status_code = 403
    default_message = 'Forbidden'


class NotFoundError(ApiError):
    status_code = 404
    default_message = 'Not found'


class ConflictError(ApiError):
    status_code = 409
    default_message = 'Conflict'


class InternalError(ApiError):
    pass


def error_response(err: ApiError):
    return jsonify({'success': False, 'error': err.to_dict()}), err.status_code


def register_error_handlers(flask_app):
    from vibelink import db

    @flask_app.errorhandler(ApiError)
    def handle_api_error(err):
        if isinstance(err, InternalError):
            flask_app.logger.error(f"[error] {err.message}")
        else:
            flask_app.logger.info(f"[rejected] {err.status_code} {err.message}")
        return error_response(err)

    @flask_app.errorhandler(IntegrityError)
    def handle_integrity_error(err):
        db.session.rollback()
        flask_app.logger.info(f"[conflict] integrity error: {err.orig}")
        return error_response(ConflictError('Duplicate entry', code='DUPLICATE_ENTRY'))

    @flask_app.errorhandler(HTTPException)
    def handle_http_exception(err):
        if err.code == 404:
            return error_response(NotFoundError('Route not found'))
        api_err = ApiError(err.description)
        api_err.status_code = err.code or 500
        return error_response(api_err)

    @flask_app.errorhandler(Exception)
    def handle_unexpected(err):
        db.session.rollback()
        flask_app.logger.exception(f"[error] unhandled {type(err).__name__}")
        return error_response(InternalError())
