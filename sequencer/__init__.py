"""
Pro-Move Sequencer
Flask Application Factory.

Usage:
    from sequencer import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from sequencer.config import config
from sequencer.middleware.logging_config import configure_logging
from sequencer.middleware.timing import init_request_timing
from sequencer.models import db

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # applied per route
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)

_MODEL_MODULES = (
    "organization",
    "catalog",
    "staff",
    "plan",
    "backlog",
    "run_ledger",
    "feature_flag",
    "scheduling",
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)

    from sequencer.services.clock import SystemClock
    app.extensions["sequencer_clock"] = SystemClock()

    # ── Models (register tables on db.metadata) ──────────────────────────
    for module in _MODEL_MODULES:
        importlib.import_module(f"sequencer.models.{module}")

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and \
            ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)

    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from sequencer.blueprints.feature_flag_bp import feature_flag_bp
    from sequencer.blueprints.health_bp import health_bp
    from sequencer.blueprints.scheduler_bp import scheduler_bp
    from sequencer.blueprints.sequencer_bp import sequencer_bp
    from sequencer.blueprints.staff_bp import staff_bp

    app.register_blueprint(sequencer_bp)
    app.register_blueprint(staff_bp)
    app.register_blueprint(feature_flag_bp)
    app.register_blueprint(scheduler_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    _register_cli(app)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    from sequencer.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("sequencer.services.scheduled_jobs")
    from sequencer.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    return app


def _register_cli(app):
    from sequencer.utils.helpers import parse_as_of

    @app.cli.command("run-rollover")
    @click.option("--org-id", type=int, required=True, help="Organization to tick.")
    @click.option("--role-id", "role_ids", type=int, multiple=True, help="Role id (repeatable).")
    @click.option("--as-of", default=None, help="Simulated ISO-8601 instant.")
    @click.option("--dry-run", is_flag=True, help="Compute and log without writing plan rows.")
    def run_rollover_cmd(org_id, role_ids, as_of, dry_run):
        """Run the weekly plan rollover for one organization."""
        from sequencer.services.plan_pipeline import run_rollover
        try:
            as_of_dt = parse_as_of(as_of)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--as-of") from exc
        result = run_rollover(org_id, list(role_ids), as_of=as_of_dt, dry_run=dry_run)
        click.echo(f"status={result['status']}")
        for run in result.get("runs", []):
            click.echo(f"  role={run['role_id']} week={run['target_week_start']} "
                       f"status={run['status']} stage={run['stage']}")
            for line in run["logs"]:
                click.echo(f"    [{line['level']}] {line['message']}")

    @app.cli.command("reconcile-sites")
    @click.option("--location-id", type=int, default=None, help="Reconcile one site only.")
    @click.option("--as-of", default=None, help="Simulated ISO-8601 instant.")
    def reconcile_sites_cmd(location_id, as_of):
        """Reconcile last week's completion for due sites."""
        from sequencer.services.clock import FixedClock
        from sequencer.services.reconciler import reconcile_due_sites, reconcile_site
        try:
            as_of_dt = parse_as_of(as_of)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--as-of") from exc
        if location_id is not None:
            result = reconcile_site(location_id, as_of=as_of_dt)
        else:
            result = reconcile_due_sites(clock=FixedClock(as_of_dt) if as_of_dt else None)
        click.echo(result)

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run a registered scheduled job once (for external cron)."""
        from sequencer.services.scheduler_service import SchedulerService
        result = SchedulerService.run_job(job_name)
        click.echo(f"{job_name}: {result['status']} in {result.get('duration_ms', 0)}ms")
        if result["status"] in ("failed", "error"):
            raise SystemExit(1)
