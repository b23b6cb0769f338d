import os
import logging
from flask import Flask, jsonify, redirect, url_for
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from dotenv import load_dotenv

from .config import DevConfig, ProdConfig, TestConfig

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()

CONFIGS = {
    'development': DevConfig,
    'testing': TestConfig,
    'production': ProdConfig,
}


def create_app(config_name: str | None = None) -> Flask:
    """Application factory with environment based configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)

    # Pick configuration
    env = config_name or os.getenv('ENV') or os.getenv('FLASK_ENV') or 'production'
    cfg_cls = CONFIGS.get(env, ProdConfig)
    app.config.from_object(cfg_cls)
    if not app.config.get('UPLOAD_FOLDER'):
        app.config['UPLOAD_FOLDER'] = os.path.join(app.instance_path, 'uploads')

    # Initialise logging
    logging.basicConfig(level=logging.DEBUG if app.debug else logging.INFO)

    db.init_app(app)
    migrate.init_app(app, db)

    # Ensure models loaded so tables can be created
    from upkeep import models  # noqa
    with app.app_context():
        db.create_all()

    from upkeep.events import init_events
    init_events(app)

    _register_error_handlers(app)

    @app.route('/')
    def index():
        return redirect(url_for('estimates.list_estimates'))

    from upkeep.estimates.routes import bp as estimates_bp
    from upkeep.work_orders.routes import bp as work_orders_bp
    from upkeep.invoices.routes import bp as invoices_bp
    from upkeep.reconcile import estimates_cli

    app.register_blueprint(estimates_bp, url_prefix='/estimates')
    app.register_blueprint(work_orders_bp, url_prefix='/work-orders')
    app.register_blueprint(invoices_bp, url_prefix='/invoices')
    app.cli.add_command(estimates_cli)

    return app


def _register_error_handlers(app: Flask) -> None:
    from upkeep.errors import UpkeepError

    @app.errorhandler(UpkeepError)
    def upkeep_error(err):
        return jsonify(error=err.message), err.status_code

    @app.errorhandler(404)
    def not_found(_):
        return jsonify(error='Not found'), 404

    @app.errorhandler(405)
    def method_not_allowed(_):
        return jsonify(error='Method not allowed'), 405

    @app.errorhandler(500)
    def server_error(_):
        return jsonify(error='Internal server error'), 500
