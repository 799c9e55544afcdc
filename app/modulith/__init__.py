import logging
import os
import uuid

from flask import Flask, g, request
from dotenv import load_dotenv

from app.modulith.config import load_config
from app.modulith.container import ServiceContainer
from app.modulith.db import init_db, teardown_db_session
from app.modulith.entities import EntityRegistry
from app.modulith.logging_config import setup_logging
from app.modulith.problem import register_error_handlers
from app.modulith.registry import build_composition_root
from app.modulith.resources import build_api_blueprint
from app.modulith.routes import bp as routes_bp

logger = logging.getLogger(__name__)


def compose(app: Flask) -> None:
    """
    Build the composition root from the modules tree and wire it into the app:
    services -> container, persistence -> entity registry, api -> blueprint.
    Any CompositionError propagates and the app is never returned.
    """
    cr = build_composition_root(
        app.config["MODULES_ROOT"],
        app.config["ENV"],
        strict_overrides=bool(app.config.get("MODULES_STRICT_OVERRIDES")),
    )
    container = ServiceContainer(cr.services, parameters=dict(app.config))
    container.validate()
    entities = EntityRegistry.from_definitions(cr.persistence, container)
    api_bp, resources = build_api_blueprint(cr.api, entities, container, app.config)

    app.extensions["composition_root"] = cr
    app.extensions["service_container"] = container
    app.extensions["entity_registry"] = entities
    app.extensions["api_resources"] = resources
    app.register_blueprint(api_bp, url_prefix=app.config["API_PREFIX"] or None)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.json.sort_keys = False

    setup_logging(app.config["LOG_LEVEL"])

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not os.environ.get("DATABASE_URL"):
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    compose(app)
    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)

    @app.before_request
    def _assign_request_id():
        rid = (request.headers.get("X-Request-ID") or "").strip()
        g.request_id = rid[:64] if rid else uuid.uuid4().hex

    @app.after_request
    def _echo_request_id(resp):
        rid = getattr(g, "request_id", None)
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp

    app.teardown_appcontext(teardown_db_session)
    register_error_handlers(app)

    logger.info("create_app() complete; app ready to serve (env=%s)", env)
    return app
