from flask import Flask

from .extensions import db, migrate, pipeline


def create_app(config_object="config.Config"):
    """App factory. ``config_object`` is an import path or a config class."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    migrate.init_app(app, db)
    pipeline.init_app(app)

    from . import models  # noqa: F401  register tables on the metadata

    from .api.notes import bp as notes_bp
    app.register_blueprint(notes_bp)

    @app.get("/health")
    def health():
        return {"status": "ok", "executor": pipeline.mode}

    return app
