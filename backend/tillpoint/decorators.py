# Overview: Request decorators that establish the caller's identity and operation context.

from functools import wraps
from flask import current_app, g, jsonify, request

from .extensions import SUBSCRIPTION_GATE_KEY
from .services.policy import ROLES, Identity, OperationContext


def _parse_branch_ids(raw: str | None) -> frozenset[int]:
    if not raw:
        return frozenset()
    ids = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise ValueError(f"invalid branch id {part!r}")
        ids.add(int(part))
    return frozenset(ids)


def identity_from_headers(headers) -> Identity | None:
    """
    Build the caller's Identity from the trusted gateway headers.

    X-User-Id:       numeric user id
    X-User-Role:     admin | manager | cashier
    X-Branch-Access: comma-separated branch ids the user may act on

    Returns None when the headers are missing or malformed.
    """
    user_id = (headers.get("X-User-Id") or "").strip()
    role = (headers.get("X-User-Role") or "").strip().lower()
    if not user_id.isdigit() or role not in ROLES:
        return None
    try:
        branch_ids = _parse_branch_ids(headers.get("X-Branch-Access"))
    except ValueError:
        return None
    return Identity(user_id=int(user_id), role=role, branch_ids=branch_ids)


def current_context() -> OperationContext:
    return OperationContext(identity=g.identity, gate=current_app.extensions[SUBSCRIPTION_GATE_KEY])


def require_identity(f):
    """
    Require an upstream identity and build the operation context.

    Sets:
    - g.identity: the caller's Identity
    - g.operation_context: OperationContext(identity, subscription gate)

    Returns 401 if the identity headers are missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity = identity_from_headers(request.headers)
        if identity is None:
            return jsonify({"error": "AUTHENTICATION_REQUIRED", "message": "Authentication required"}), 401

        g.identity = identity
        g.operation_context = current_context()
        return f(*args, **kwargs)

    return decorated_function
