import logging

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS

from .config import Config, TestingConfig

db = SQLAlchemy()
migrate = Migrate()


def create_app(testing: bool = False, config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or (TestingConfig if testing else Config))
    app.logger.setLevel(logging.DEBUG if app.debug else logging.INFO)

    CORS(app)
    db.init_app(app)
    migrate.init_app(app, db)

    from . import models  # noqa: F401
    from .errors import register_error_handlers
    from .routes import bp as main_bp
    from .api import api as api_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp, url_prefix="/api")
    register_error_handlers(app)

    return app
