from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from pathlib import Path
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

db = SQLAlchemy()
migrate = Migrate()

from .config import Config
from .timers import SectionTimerRegistry

section_timers = SectionTimerRegistry()

from .db_maintenance import ensure_database_schema


def create_app(config_class: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    config = config_class or Config
    app.config.from_object(config)

    Path(app.instance_path).mkdir(parents=True, exist_ok=True)

    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if db_uri:
        try:
            url = make_url(db_uri)
        except ArgumentError:
            url = None
        if url and url.drivername == "sqlite" and url.database and url.database != ":memory:":
            db_path = Path(url.database)
            if not db_path.is_absolute():
                db_path = Path(app.root_path) / db_path
            db_path.parent.mkdir(parents=True, exist_ok=True)

    db.init_app(app)
    migrate.init_app(app, db)
    section_timers.init_app(app)

    from .api import api_bp

    app.register_blueprint(api_bp)

    @app.route("/")
    def index():
        return jsonify({"service": "mockexam", "api": "/api"})

    with app.app_context():
        ensure_database_schema(db.engine, app.logger)

    return app
