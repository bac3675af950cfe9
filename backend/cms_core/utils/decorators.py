from functools import wraps

from flask import g, jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity

from cms_core.domain.records import Actor


def current_actor() -> Actor:
    """Actor for the current request, built from the JWT subject and claims."""
    claims = get_jwt()
    return Actor(
        id=str(get_jwt_identity()),
        email=claims.get("email") or "",
        name=claims.get("name"),
        roles=frozenset(claims.get("roles") or []),
    )


def site_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        site = getattr(g, "current_site", None)
        if not site:
            return jsonify({"error": "Site context missing"}), 400

        if get_jwt().get("site_id") != site.id:
            return jsonify({"error": "Site mismatch"}), 403

        return fn(*args, **kwargs)
    return wrapper


def roles_required(*allowed_roles):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            roles = set(get_jwt().get("roles") or [])

            if not roles.intersection(allowed_roles):
                return jsonify({"error": "Insufficient permissions"}), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator


def feature_enabled(feature_name):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            site = g.current_site

            if not site.has_feature(feature_name):
                return jsonify({
                    "error": f"Feature '{feature_name}' is disabled for this site"
                }), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
