import os
from pathlib import Path

from flask import Flask, g, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from marketescrow.config import MarketSettings, engine_options, load_settings, resolve_database_url
from marketescrow.errors import MarketError
from marketescrow.extensions import cors, db, migrate
from marketescrow import models  # noqa: F401  (register tables with the metadata)
from marketescrow.integrations.messaging.factory import messaging_health
from marketescrow.segments.segment_market_admin import market_admin_bp
from marketescrow.segments.segment_market_crypto import market_crypto_bp
from marketescrow.segments.segment_market_orders import market_orders_bp
from marketescrow.utils.observability import init_sentry, install_request_observers


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        script = ScriptDirectory.from_config(cfg)
        heads = script.get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _with_trace_id(payload: dict) -> dict:
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def create_app(settings: MarketSettings | None = None):
    app = Flask(__name__)
    init_sentry(app)

    settings = settings or load_settings()
    env = settings.env

    # Production safety checks
    if settings.is_production:
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["MARKET_SETTINGS"] = settings

    database_url = resolve_database_url(env)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    options = engine_options(database_url)
    if "pool_size" in options:
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            int(options.get("pool_size", 0) or 0),
            int(options.get("max_overflow", 0) or 0),
            int(options.get("pool_timeout", 0) or 0),
            int(options.get("pool_recycle", 0) or 0),
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options

    # CORS configuration
    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if settings.is_production:
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    @app.errorhandler(MarketError)
    def _api_market_error(error: MarketError):
        if error.status >= 500:
            app.logger.warning("market_error code=%s path=%s message=%s", error.code, request.path, error.message)
        return jsonify(_with_trace_id(error.to_dict())), int(error.status)

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only for predictable client handling.
        if not request.path.startswith("/api/"):
            return error
        payload = {
            "ok": False,
            "error": error.name,
            "message": error.description or error.name,
            "status": int(error.code or 500),
        }
        return jsonify(_with_trace_id(payload)), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        payload = {
            "ok": False,
            "error": "InternalServerError",
            "message": "Internal server error",
            "status": 500,
        }
        return jsonify(_with_trace_id(payload)), 500

    app.register_blueprint(market_orders_bp)
    app.register_blueprint(market_crypto_bp)
    app.register_blueprint(market_admin_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            msg = str(e)
            if msg:
                db_error = (msg[:300] + "...") if len(msg) > 300 else msg
        payload = {
            "ok": True,
            "service": "marketescrow-backend",
            "env": env,
            "db": db_state,
            "alembic_head": _resolve_alembic_head(),
            "sms": messaging_health(settings),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/api/version")
    def version():
        return jsonify({
            "ok": True,
            "alembic_head": _resolve_alembic_head(),
            "git_sha": (os.getenv("GIT_SHA") or "unknown").strip(),
            "settings": settings.public_dict(),
        })

    return app
