"""Flask application factory for the TapeForge job runner."""

from pathlib import Path

from flask import Flask, jsonify


def create_app(config_file: Path | None = None) -> Flask:
    app = Flask(__name__)
    app.config["TAPEFORGE_CONFIG"] = config_file

    from tapeforge.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    return app
