"""
application/problem+json error bodies for every error the API returns.
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Flask, g, has_request_context, jsonify, request
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from app.modulith.errors import ApiError

logger = logging.getLogger(__name__)

PROBLEM_JSON = "application/problem+json"

_TITLES = {
    400: "Bad Request",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    415: "Unsupported Media Type",
    422: "Unprocessable Entity",
}


def default_title(status: int) -> str:
    if status >= 500:
        return "Internal Server Error"
    return _TITLES.get(status, "Error")


def problem_payload(
    status: int,
    *,
    title: str | None = None,
    detail: str | None = None,
    violations: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": "about:blank",
        "title": title or default_title(status),
        "status": status,
    }
    if detail:
        payload["detail"] = detail
    if has_request_context():
        payload["instance"] = request.path
        rid = getattr(g, "request_id", None)
        if rid:
            payload["requestId"] = rid
    if violations:
        payload["violations"] = violations
    return payload


def problem_response(status: int, **kwargs: Any):
    resp = jsonify(problem_payload(status, **kwargs))
    resp.status_code = status
    resp.mimetype = PROBLEM_JSON
    return resp


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        return problem_response(e.status, title=e.title, detail=e.detail, violations=e.violations)

    @app.errorhandler(IntegrityError)
    def _integrity_error(e: IntegrityError):
        # the failed flush leaves the request session unusable until rolled back
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        logger.warning("Integrity error (request_id=%s): %s", getattr(g, "request_id", None), e.orig)
        return problem_response(409, detail="The request conflicts with existing data.")

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        resp = problem_response(e.code or 500, title=e.name, detail=e.description)
        if e.code == 405 and getattr(e, "valid_methods", None):
            resp.headers["Allow"] = ", ".join(e.valid_methods)
        return resp

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        logger.exception("Unhandled error (request_id=%s)", getattr(g, "request_id", None))
        detail = str(e) if app.config.get("ENV") in ("development", "dev") else None
        return problem_response(500, detail=detail)
