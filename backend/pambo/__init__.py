import json
import os
import time

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from pambo.extensions import cors, db, migrate
from pambo.jobs.event_worker import register_default_handlers, start_event_worker
from pambo.segments.segment_matchmaking import matchmaking_bp
from pambo.segments.segment_metrics import metrics_bp
from pambo.utils.env import TelemetrySettings, env_bool, env_int, is_production, pambo_env
from pambo.utils.event_queue import EventQueueWorker
from pambo.utils.observability import init_otel, init_sentry, install_request_observers
from pambo.utils.telemetry import Telemetry, get_telemetry


DEFAULT_PROD_ORIGINS = "https://pambo.biz,https://www.pambo.biz"
MIGRATIONS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "migrations"))


def _cors_origins(env: str) -> list[str]:
    raw = (os.getenv("CORS_ALLOWED_ORIGINS") or os.getenv("FRONTEND_URL") or "").strip()
    if is_production(env):
        raw = raw or DEFAULT_PROD_ORIGINS
        return [o.strip() for o in raw.split(",") if o.strip()]
    return ["*"] if not raw else [o.strip() for o in raw.split(",") if o.strip()]


def _database_url(env: str, instance_dir: str) -> str:
    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        if is_production(env):
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        database_url = f"sqlite:///{os.path.join(instance_dir, 'pambo.db').replace(os.sep, '/')}"
    # Hosted Postgres URLs still use the legacy scheme.
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    return database_url


def create_app(config: dict | None = None, *, telemetry: Telemetry | None = None):
    app = Flask(__name__)
    init_sentry(app)

    env = pambo_env()

    # Production safety checks
    if is_production(env):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    overrides = dict(config or {})
    if "SQLALCHEMY_DATABASE_URI" not in overrides:
        os.makedirs(instance_dir, exist_ok=True)
        app.config["SQLALCHEMY_DATABASE_URI"] = _database_url(env, instance_dir)
    database_url = overrides.get("SQLALCHEMY_DATABASE_URI") or app.config["SQLALCHEMY_DATABASE_URI"]
    engine_options = {"pool_pre_ping": True}
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_recycle": env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
            }
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
    app.config.update(overrides)

    cors.init_app(app, resources={r"/api/*": {"origins": _cors_origins(env)}})
    db.init_app(app)
    migrate.init_app(app, db, directory=MIGRATIONS_DIR)

    settings = telemetry.settings if telemetry is not None else TelemetrySettings.from_env()
    telemetry = telemetry or Telemetry.create(settings, logger=app.logger)
    telemetry.init_app(app)
    register_default_handlers(telemetry)
    install_request_observers(app)

    with app.app_context():
        init_otel(app, enabled=env_bool("OTEL_ENABLED", False))

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        payload = {
            "ok": False,
            "error": error.name,
            "message": error.description or error.name,
            "status": int(error.code or 500),
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        payload = {
            "ok": False,
            "error": "InternalServerError",
            "message": "Internal server error",
            "status": 500,
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid and request.path.startswith("/api/"):
            payload["trace_id"] = rid
        return jsonify(payload), 500

    app.register_blueprint(matchmaking_bp)
    app.register_blueprint(metrics_bp)

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
            "service": "pambo-backend",
            "env": env,
            "db": db_state,
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({
            "ok": True,
            "service": "pambo-backend",
            "env": env,
        })

    @app.cli.command("events-drain")
    @click.option("--limit", "limit", type=int, default=100, show_default=True, help="Events to process")
    def events_drain(limit: int):
        current = get_telemetry(app)
        worker = EventQueueWorker(current.events, batch_size=max(1, limit), logger=app.logger)
        processed = worker.run_once()
        click.echo(f"events_drained processed={processed} depth={current.events.depth}")

    @app.cli.command("metrics-snapshot")
    def metrics_snapshot():
        snapshot = get_telemetry(app).metrics.snapshot()
        click.echo(json.dumps(snapshot.to_dict(), indent=2, sort_keys=True))

    @app.cli.command("event-worker")
    def event_worker():
        current = get_telemetry(app)
        worker = current.worker if current.worker is not None and current.worker.running else start_event_worker(current)
        click.echo(f"event_worker_running interval_ms={worker.interval_ms} batch_size={worker.batch_size}")
        try:
            while worker.running:
                time.sleep(max(0.1, worker.interval_ms / 1000.0))
        except KeyboardInterrupt:
            pass
        finally:
            current.shutdown(drain=True)
            click.echo("event_worker_stopped")

    if settings.worker_autostart and not app.config.get("TESTING"):
        start_event_worker(telemetry)

    return app
