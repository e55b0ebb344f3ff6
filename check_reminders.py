# check_reminders.py
from app import create_app, initialize_database

if __name__ == '__main__':
    # Runs a single reminder tick now, outside the per-minute scheduler.
    app = create_app()
    initialize_database(app)
    report = app.extensions['reminders'].run_tick()
    print(f"Due: {report.due}, sent: {report.sent}, skipped: {report.skipped}, failed: {report.failed}")
