from flask import Flask

from app.api import api_bp
from app.config import Config
from app.extensions import db, migrate
from app.jobs.scheduler import start_scheduler
from app.services.import_status import init_status_store


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    migrate.init_app(app, db)
    init_status_store(app)

    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized bookmark database.")

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
