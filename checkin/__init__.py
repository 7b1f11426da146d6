# checkin/__init__.py
import logging
from typing import Any, Mapping, Optional

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .config import Config
from .models import db
from .object_store import R2ObjectStore


def create_app(overrides: Optional[Mapping[str, Any]] = None, *, object_store: Optional[R2ObjectStore] = None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # no-op when the host (gunicorn, pytest) already configured logging
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    # --- Database ---
    db.init_app(app)
    if app.config.get("AUTO_INIT_DB"):
        with app.app_context():
            db.create_all()

    # --- Object store (lessons + recordings buckets) ---
    app.extensions["checkin.object_store"] = object_store or R2ObjectStore.from_config(app.config)

    # --- CORS ---
    # credentials are needed so the identity cookie rides along with fetch()
    CORS(
        app,
        resources={r"/api/*": {"origins": app.config.get("CORS_ORIGINS") or []}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        expose_headers=["Content-Type"],
    )

    # --- Blueprints ---
    from .auth import auth_bp
    from .api import api_bp

    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(api_bp, url_prefix="/api")

    @app.errorhandler(Exception)
    def on_error(e):
        if isinstance(e, HTTPException):
            return e
        app.logger.exception("Unhandled error: %s", e)
        return jsonify({"ok": False, "error": "internal_error"}), 500

    return app
