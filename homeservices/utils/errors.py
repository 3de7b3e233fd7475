"""Typed service errors and the operation boundary.

Every escrow and dispute operation raises one of the ``ServiceError``
subclasses below. Routes never build error responses by hand: the handler
registered in ``register_error_handlers`` renders ``{'error', 'code'}`` with
the mapped HTTP status, so clients can branch on ``code``.
"""

import logging
from functools import wraps

from flask import jsonify

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors surfaced to callers with a stable kind."""

    kind = 'internal'
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self):
        return {'error': self.message, 'code': self.kind}


class Unauthenticated(ServiceError):
    kind = 'unauthenticated'
    status_code = 401


class PermissionDenied(ServiceError):
    kind = 'permission-denied'
    status_code = 403


class InvalidArgument(ServiceError):
    kind = 'invalid-argument'
    status_code = 400


class NotFound(ServiceError):
    kind = 'not-found'
    status_code = 404


class FailedPrecondition(ServiceError):
    kind = 'failed-precondition'
    status_code = 400


class AlreadyExists(ServiceError):
    kind = 'already-exists'
    status_code = 409


class DeadlineExceeded(ServiceError):
    kind = 'deadline-exceeded'
    status_code = 400


class Internal(ServiceError):
    kind = 'internal'
    status_code = 500


class Unavailable(ServiceError):
    kind = 'unavailable'
    status_code = 503


def service_operation(failure_message):
    """Decorator marking a service method as an operation boundary.

    Typed errors propagate unchanged; anything else is logged and re-raised
    as ``Internal(failure_message)``. The session is rolled back in both
    cases so a row lock taken by ``with_for_update`` is released.
    """
    def decorator(f):
        @wraps(f)
        def decorated(self, *args, **kwargs):
            try:
                return f(self, *args, **kwargs)
            except ServiceError:
                self.session.rollback()
                raise
            except Exception:
                self.session.rollback()
                logger.exception(f'{failure_message} ({f.__name__})')
                raise Internal(failure_message)
        return decorated
    return decorator


def require_caller(caller_id):
    """Raise Unauthenticated when no caller identity is present."""
    if caller_id is None:
        raise Unauthenticated('User must be authenticated')
    return caller_id


def register_error_handlers(app):
    """Render ServiceError subclasses as JSON responses."""

    @app.errorhandler(ServiceError)
    def handle_service_error(error):
        if error.status_code >= 500:
            app.logger.error(f'{error.kind}: {error.message}')
        return jsonify(error.to_dict()), error.status_code
