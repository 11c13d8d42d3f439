# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app
from werkzeug.exceptions import HTTPException

from .errors import LedgerError


ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Require an upstream-authenticated actor on the request.

    Authentication happens in front of this service; the auth layer forwards
    the user id in the X-User-Id header. Sets:
    - g.actor_id: the acting user's id (string), recorded as createdBy /
      recordedBy / activity user on every mutation

    Returns 401 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor_id:
            return jsonify({"error": "Authentication required", "category": "auth"}), 401

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function


def json_errors(f):
    """
    Translate service errors into JSON responses.

    LedgerError subclasses carry their own status and category. Anything
    else is logged with its traceback and reported as a generic 500; the
    service unit of work has already rolled the session back.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except LedgerError as e:
            return jsonify(e.to_dict()), e.status_code
        except HTTPException:
            raise
        except Exception:
            current_app.logger.exception("Unhandled error in %s %s", request.method, request.path)
            return jsonify({"error": "Internal server error", "category": "server"}), 500

    return decorated_function
