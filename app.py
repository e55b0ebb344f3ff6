import os
import logging

import click
from flask import Flask, jsonify
from flask_apscheduler import APScheduler
from flask_migrate import Migrate
from dotenv import load_dotenv
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from twilio.base.exceptions import TwilioException

from models import db, User, Medicine
from notifications import build_transport, NotificationDispatcher, DeliveryFailure
from reminders import ReminderOrchestrator, load_timezone, DEFAULT_TIMEZONE
from repository import MedicineStore

# ───── Load environment variables ─────
load_dotenv()

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s')
logger = logging.getLogger(__name__)

migrate = Migrate()


def _env_flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# ───── Database Configuration ─────
def configure_database(app):
    """Pick the database URL: DATABASE_URL, then MySQL variables, then SQLite."""
    if app.config.get('SQLALCHEMY_DATABASE_URI'):
        return "preset"
    try:
        database_url = os.getenv('DATABASE_URL')
        if database_url:
            app.config['SQLALCHEMY_DATABASE_URI'] = database_url
            logger.info("✅ Using DATABASE_URL")
            return "url"

        username = os.getenv('MYSQL_USERNAME')
        password = os.getenv('MYSQL_PASSWORD')
        hostname = os.getenv('MYSQL_HOST')
        databasename = os.getenv('MYSQL_DBNAME')
        if any([username, password, hostname, databasename]):
            if not all([username, password, hostname, databasename]):
                logger.warning("Missing MySQL environment variables, falling back to SQLite")
                app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///medreminder.db'
                return "sqlite"
            app.config['SQLALCHEMY_DATABASE_URI'] = (
                f'mysql+mysqlconnector://{username}:{password}@{hostname}/{databasename}'
            )
            logger.info("✅ Using MySQL")
            return "mysql"

        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///medreminder.db'
        logger.info("✅ Using SQLite for local development")
        return "sqlite"
    except Exception as e:
        logger.error(f"Database configuration error: {e}")
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///medreminder.db'
        return "sqlite_fallback"


def load_config(app):
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'a-secure-dev-secret-key-change-this')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # ───── SMS Configuration ─────
    app.config['TWILIO_ACCOUNT_SID'] = os.getenv('TWILIO_ACCOUNT_SID')
    app.config['TWILIO_AUTH_TOKEN'] = os.getenv('TWILIO_AUTH_TOKEN')
    app.config['TWILIO_PHONE_NUMBER'] = os.getenv('TWILIO_PHONE_NUMBER')

    # ───── Scheduler Configuration ─────
    app.config['REMINDER_TIMEZONE'] = os.getenv('REMINDER_TIMEZONE', DEFAULT_TIMEZONE)
    app.config['REMINDER_SCHEDULER_ENABLED'] = _env_flag('REMINDER_SCHEDULER_ENABLED', True)
    app.config['REMINDER_MAX_INSTANCES'] = int(os.getenv('REMINDER_MAX_INSTANCES', '1'))
    app.config['SCHEDULER_API_ENABLED'] = _env_flag('SCHEDULER_API_ENABLED', False)


# ───── Database Initialization Function ─────
def initialize_database(app):
    """Create missing tables, logging instead of raising."""
    try:
        with app.app_context():
            existing_tables = inspect(db.engine).get_table_names()
            if 'user' not in existing_tables or 'medicine' not in existing_tables:
                logger.info("🔧 Creating database tables...")
                db.create_all()
                logger.info(f"📋 Available tables: {inspect(db.engine).get_table_names()}")
            else:
                logger.info("✅ Database tables already exist")
    except SQLAlchemyError as e:
        logger.error(f"❌ Database initialization error: {e}")
        return False
    return True


def build_orchestrator(app, transport=None, clock=None):
    tz = load_timezone(app.config['REMINDER_TIMEZONE'])
    dispatcher = NotificationDispatcher(
        transport or build_transport(app.config),
        app.config.get('TWILIO_PHONE_NUMBER'),
    )
    kwargs = {'clock': clock} if clock else {}
    return ReminderOrchestrator(
        app,
        MedicineStore(db),
        dispatcher,
        tz,
        max_instances=app.config['REMINDER_MAX_INSTANCES'],
        **kwargs,
    )


def register_routes(app):
    @app.route('/health')
    def health():
        orchestrator = app.extensions['reminders']
        try:
            MedicineStore(db).ping()
            database = "ok"
        except SQLAlchemyError as e:
            logger.error(f"Health check database error: {e}")
            db.session.rollback()
            database = "unavailable"
        status = 200 if database == "ok" else 503
        return jsonify({
            'database': database,
            'scheduler': 'running' if orchestrator.running else 'stopped',
            'timezone': orchestrator.tz.key,
        }), status

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'message': 'Not found'}), 404

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        return jsonify({'message': 'Internal server error'}), 500


def register_commands(app):
    @app.cli.command("init-db")
    def init_db_command():
        """Drops and creates all database tables."""
        db.drop_all()
        db.create_all()
        click.echo("Database initialized.")

    @app.cli.command("run-reminders")
    def run_reminders_command():
        """Run one reminder check immediately."""
        report = app.extensions['reminders'].run_tick()
        click.echo(repr(report))

    @app.cli.command("send-test-sms")
    @click.argument("phone_number")
    def send_test_sms_command(phone_number):
        """Send a test SMS to verify the Twilio settings."""
        dispatcher = app.extensions['reminders'].dispatcher
        try:
            sid = dispatcher.transport.send_message(
                "✅ Medicine reminder test message",
                from_=dispatcher.sender,
                to=phone_number,
            )
        except (DeliveryFailure, TwilioException) as e:
            raise click.ClickException(f"Test SMS failed: {e}")
        click.echo(f"Test SMS sent, SID: {sid}")


def create_app(test_config=None, transport=None, clock=None):
    app = Flask(__name__)
    load_config(app)
    if test_config:
        app.config.update(test_config)
    configure_database(app)

    # ───── Extensions ─────
    db.init_app(app)
    migrate.init_app(app, db)

    app.extensions['reminders'] = build_orchestrator(app, transport=transport, clock=clock)

    register_routes(app)
    register_commands(app)

    @app.shell_context_processor
    def shell_context():
        return {'db': db, 'User': User, 'Medicine': Medicine}

    return app


# ───── Main Execution ─────
if __name__ == '__main__':
    app = create_app()
    initialize_database(app)

    orchestrator = app.extensions['reminders']
    if app.config['REMINDER_SCHEDULER_ENABLED']:
        try:
            orchestrator.start(APScheduler())
        except Exception as e:
            logger.error(f"Scheduler initialization error: {e}")

    try:
        app.run(host='0.0.0.0', port=int(os.getenv('PORT', '5000')), use_reloader=False)
    finally:
        orchestrator.stop()
