# Overview: Request decorators that resolve token-addressed resources for API routes.

from functools import wraps
from flask import jsonify, g

from .services import order_service, route_service
from .validation import ExpiredError, NotFoundError


def require_driver_route(f):
    """
    Resolve the <token> path segment to the driver's route.

    The driver link is the only credential a driver holds, so an unknown
    token answers 404 without saying whether the route ever existed.

    Sets:
    - g.route: the DeliveryRoute addressed by the token
    """
    @wraps(f)
    def decorated_function(token, *args, **kwargs):
        try:
            g.route = route_service.get_route_by_token(token)
        except NotFoundError as e:
            return jsonify({"error": str(e)}), 404
        return f(*args, **kwargs)

    return decorated_function


def require_order_access(f):
    """
    Resolve the <access_token> path segment to the customer's order.

    404 for an unknown token, 410 once the link expired (even when the
    order is still being delivered).

    Sets:
    - g.order: the Order addressed by the link
    """
    @wraps(f)
    def decorated_function(access_token, *args, **kwargs):
        try:
            g.order = order_service.get_order_by_token(access_token)
        except NotFoundError as e:
            return jsonify({"error": str(e)}), 404
        except ExpiredError as e:
            return jsonify({"error": str(e)}), 410
        return f(*args, **kwargs)

    return decorated_function
