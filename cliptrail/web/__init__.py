"""Flask application factory for the ClipTrail job server."""

from flask import Flask, jsonify


def create_app() -> Flask:
    app = Flask(__name__)

    from cliptrail.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    return app
