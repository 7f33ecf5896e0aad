"""
Application factory, CLI commands and server entry point.

    flask --app allsales.app sync-new
    python -m allsales
"""
import json
import os

import click
import structlog
from flask import Flask

from allsales import redis_cache
from allsales.constants import BUILD_VERSION, RUN_KIND_SYNC_NEW, RUN_KIND_UPDATE_ALL
from allsales.db import check_database_url, db, engine_options, init_db
from allsales.exceptions import register_exception_handlers
from allsales.jobs.scheduler import JobScheduler
from allsales.legacy import import_legacy_documents, migrate_stored_records
from allsales.logging_config import configure_logging
from allsales.routes.catalog import catalog_bp, metrics_bp
from allsales.services import build_services, get_services
from allsales.settings import load_settings, redact_settings
from allsales.steam_client import SteamClient

logger = structlog.get_logger('main')


def create_app(config_overrides=None, settings=None, client=None):
    """Application factory"""
    configure_logging()
    settings = settings or load_settings()

    app = Flask(__name__)
    database = settings['database']
    check_database_url(database['url'])
    app.config['SQLALCHEMY_DATABASE_URI'] = database['url']
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = engine_options(
        database['url'], database['pool_size'], database['max_overflow']
    )
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['CACHE_ENABLED'] = True
    app.config.update(config_overrides or {})
    app.config['ALLSALES_SETTINGS'] = settings

    if database['url'].startswith('sqlite:///'):
        os.makedirs(os.path.dirname(os.path.abspath(database['url'][len('sqlite:///'):])), exist_ok=True)

    # Initialize components
    db.init_app(app)
    if app.config['CACHE_ENABLED']:
        redis_cache.init_cache(settings['cache']['redis_url'])

    # Register exception handlers
    register_exception_handlers(app)

    # Register blueprints
    app.register_blueprint(catalog_bp)
    app.register_blueprint(metrics_bp)

    with app.app_context():
        init_db()

    build_services(app, settings, client or SteamClient.from_settings(settings))
    register_commands(app)

    logger.info("app_created", version=BUILD_VERSION, settings=redact_settings(settings))
    return app


def _read_documents(path):
    """JSON array or JSON lines"""
    with open(path, 'r', encoding='utf-8') as handle:
        content = handle.read().strip()
    if not content:
        return []
    if content.startswith('['):
        return json.loads(content)
    return [json.loads(line) for line in content.splitlines() if line.strip()]


def register_commands(app):

    @app.cli.command('sync-new')
    def sync_new_command():
        """Store apps that appeared on Steam since the last run."""
        result = get_services().updates.run_exclusive(RUN_KIND_SYNC_NEW, trigger='cli')
        click.echo(json.dumps(result, indent=2))

    @app.cli.command('update-all')
    def update_all_command():
        """Sync new apps, then refresh every stored record."""
        result = get_services().updates.run_exclusive(RUN_KIND_UPDATE_ALL, trigger='cli')
        click.echo(json.dumps(result, indent=2))

    @app.cli.command('import-legacy')
    @click.argument('path', type=click.Path(exists=True, dir_okay=False))
    def import_legacy_command(path):
        """Import catalog documents exported from the previous store."""
        summary = import_legacy_documents(_read_documents(path))
        click.echo(json.dumps(summary, indent=2))

    @app.cli.command('migrate-records')
    def migrate_records_command():
        """Upgrade stored records written in an older shape."""
        click.echo(f"Migrated {migrate_stored_records()} records")

    @app.cli.command('stats')
    def stats_command():
        """Print catalog statistics."""
        click.echo(json.dumps(get_services().search.get_stats(), indent=2, default=str))

    @app.cli.command('unblacklist')
    @click.argument('external_id', type=int)
    def unblacklist_command(external_id):
        """Remove an appid from the blacklist so the next sync fetches it again."""
        if get_services().blacklist.remove(external_id):
            click.echo(f"Removed {external_id} from blacklist")
        else:
            raise click.ClickException(f"{external_id} is not blacklisted")


def main():
    app = create_app()
    settings = app.config['ALLSALES_SETTINGS']

    job_scheduler = None
    if settings['update']['scheduler_enabled']:
        job_scheduler = JobScheduler(settings['update'])
        job_scheduler.init_app(app)

    host = os.environ.get('HOST', '0.0.0.0')
    port = int(os.environ.get('PORT', '8080'))
    logger.info("server_starting", version=BUILD_VERSION, host=host, port=port)
    try:
        app.run(host=host, port=port, debug=False, use_reloader=False)
    finally:
        if job_scheduler:
            job_scheduler.shutdown()
        get_services(app).client.close()
        logger.info("server_stopped")


if __name__ == '__main__':
    main()
