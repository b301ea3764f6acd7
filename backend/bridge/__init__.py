# backend/bridge/__init__.py
import time
import logging
from datetime import datetime
from flask import Flask, jsonify, current_app
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from .config import Config
from .extensions import db, migrate, socketio
from .errors import BridgeError
from .services import BridgeServices, EXTENSION_KEY, get_services
from .views.devices import bp as devices_bp
from .views.sync import bp as sync_bp
from .logging_handler import init_logging
from .cli import register_cli

logger = logging.getLogger(__name__)


def create_app(config_class=Config, pool=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    origins = app.config.get("CORS_ORIGINS", ["*"])
    CORS(app, resources={r"/*": {"origins": origins}})

    # Initialize extensions with app
    db.init_app(app)
    migrate.init_app(app, db)
    socketio.init_app(app)

    init_logging(app)

    app.extensions[EXTENSION_KEY] = BridgeServices(app, pool=pool)
    app.config.setdefault("STARTED_AT", time.monotonic())

    app.register_blueprint(devices_bp, url_prefix='/device')
    app.register_blueprint(sync_bp, url_prefix='/device/auto-sync')

    @app.route("/health", methods=["GET"])
    def health():
        services = get_services()
        return jsonify({
            "status": "healthy",
            "version": current_app.config.get("BRIDGE_VERSION"),
            "zklib": "enabled",
            "uptime": round(time.monotonic() - current_app.config["STARTED_AT"], 3),
            "activeConnections": services.pool.active_count,
            "autoSync": services.scheduler.running,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        })

    @app.errorhandler(BridgeError)
    def handle_bridge_error(e):
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return jsonify({"success": False, "message": e.description}), e.code
        logger.exception("Unhandled error on request")
        return jsonify({"success": False, "message": str(e)}), 500

    register_cli(app)

    return app
