from flask import Blueprint, current_app

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON with the loaded modules."""
    cr = current_app.extensions["composition_root"]
    return {"ok": True, "env": cr.environment, "modules": list(cr.modules)}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s probes. No DB access, minimal overhead.
    """
    return "ok", 200
