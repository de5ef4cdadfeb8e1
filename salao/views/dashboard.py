# salao/views/dashboard.py
from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import login_required

from salao.core.financeiro import resumo_painel

bp = Blueprint("dashboard", __name__)

@bp.get("/dashboard")
@login_required
def index():
    return jsonify(resumo_painel())
