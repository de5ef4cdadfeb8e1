# salao/auth/routes.py
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from flask_wtf.csrf import generate_csrf

from salao.extensions import db
from salao.core.forms import validar_json, LoginForm
from salao.core.models import User
from salao.core.services import Unauthorized

bp = Blueprint("auth", __name__)


def _user_to_dict(u: User) -> dict:
    return {"id": u.id, "nome": u.nome, "email": u.email, "role": u.role}


@bp.get("/csrf")
def csrf_token():
    """Token para o cabeçalho X-CSRFToken das requisições de escrita."""
    return jsonify(csrf_token=generate_csrf())


@bp.post("/login")
def login():
    form = validar_json(LoginForm, request.get_json(silent=True))

    user = User.query.filter(User.email == form.email.data.strip().lower()).first()
    if not user or not user.check_password(form.password.data) or not user.ativo:
        raise Unauthorized("Usuário ou senha incorretos")

    login_user(user, remember=form.remember.data)
    user.ultimo_login = datetime.utcnow()
    db.session.commit()
    return jsonify(_user_to_dict(user))


@bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify(ok=True)


@bp.get("/me")
@login_required
def me():
    return jsonify(_user_to_dict(current_user))
