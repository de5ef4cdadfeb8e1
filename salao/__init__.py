# salao/__init__.py
from __future__ import annotations

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .extensions import init_extensions, db
from .logging_config import setup_logging
from .core.models import ensure_admin
from .core.services import ServiceError


def create_app(config_object: str = "config.Config", test_config: dict | None = None):
    app = Flask(__name__, template_folder="templates")

    app.config.from_object(config_object)
    if test_config:
        app.config.update(test_config)
    app.config.setdefault("WTF_CSRF_TIME_LIMIT", None)
    app.json.sort_keys = app.config.get("JSON_SORT_KEYS", False)

    setup_logging(app)
    init_extensions(app)

    # Blueprints
    from .auth.routes import bp as auth_bp
    from .views.estoque import bp as estoque_bp
    from .views.orcamentos import bp as orcamentos_bp
    from .views.financeiro import bp as financeiro_bp
    from .views.agenda import bp as agenda_bp
    from .views.settings import bp as settings_bp
    from .views.dashboard import bp as dashboard_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(estoque_bp, url_prefix="/inventory")
    app.register_blueprint(orcamentos_bp, url_prefix="/quotes")
    app.register_blueprint(financeiro_bp, url_prefix="/finance")
    app.register_blueprint(agenda_bp)
    app.register_blueprint(settings_bp, url_prefix="/settings")
    app.register_blueprint(dashboard_bp)

    # Healthcheck simples
    @app.get("/health")
    def health():
        return jsonify(ok=True)

    # Erros em JSON
    @app.errorhandler(ServiceError)
    def service_error(e: ServiceError):
        # Internal já foi logado onde foi levantado
        body = {"error": e.message or "Erro"}
        if e.details is not None:
            body["details"] = e.details
        return jsonify(body), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        return jsonify(error=e.name), e.code

    @app.errorhandler(Exception)
    def unexpected_error(e: Exception):
        app.logger.exception("Erro não tratado: %s", e)
        db.session.rollback()
        return jsonify(error="Erro interno do servidor"), 500

    # Primeira execução: cria schema e admin
    with app.app_context():
        db.create_all()
        ensure_admin()
        db.session.commit()

    return app
