import logging
import os
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from config import Config
from errors import ClassroomError
from extensions import db, login_manager, migrate
from identity import AnonymousIdentity
from logging_config import init_logging
from blueprints.auth.routes import bp as auth_bp
from blueprints.session.routes import bp as session_bp
from blueprints.images.routes import bp as images_bp
from blueprints.chat.routes import bp as chat_bp
from blueprints.teacher.routes import bp as teacher_bp

logger = logging.getLogger(__name__)

def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    init_logging(app)

    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)
    # identity comes from signed cookies, not from the Flask session
    login_manager.session_protection = None
    login_manager.anonymous_user = AnonymousIdentity

    app.register_blueprint(session_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(images_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(teacher_bp)

    @app.errorhandler(ClassroomError)
    def handle_classroom_error(exc):
        if exc.status_code >= 500:
            logger.warning("%s: %s", type(exc).__name__, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({"message": exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        logger.exception("Unhandled error")
        db.session.rollback()
        return jsonify({"message": "Unexpected server error."}), 500

    @app.cli.command("init-db")
    def init_db():
        """Create the tables without running migrations (fresh SQLite setups)."""
        db.create_all()
        print("Database tables created.")

    return app

if __name__ == "__main__":
    app = create_app()
    debug = os.getenv("FLASK_DEBUG") == "1"
    app.run(host="0.0.0.0", port=5000, debug=debug)
