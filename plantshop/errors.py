# plantshop/errors.py
from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .utils.api import api_error
from .utils.logger import get_logger

log = get_logger("errors")


class ApiError(Exception):
    """Base for failures that map to a 4xx response with one readable message."""
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(ApiError):
    status_code = 404


class InvalidInput(ApiError):
    status_code = 400


class IneligibleCoupon(ApiError):
    status_code = 400


class ConflictOnMutation(ApiError):
    status_code = 409


class ImmutableAfterUse(ApiError):
    status_code = 409


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        r = jsonify(api_error(e.message))
        r.status_code = e.status_code
        return r

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(e):
        db.session.rollback()
        log.exception("database failure: %s", e)
        r = jsonify(api_error("Service temporarily unavailable"))
        r.status_code = 500
        return r
