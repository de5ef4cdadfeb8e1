# salao/views/settings.py
from __future__ import annotations

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from salao.core.services import transaction, require_role, get_setting_int, set_setting_int, ValidationError

bp = Blueprint("settings", __name__)


@bp.get("/<key>")
@login_required
def ler(key: str):
    return jsonify(key=key, value=get_setting_int(key))

@bp.put("/<key>")
@login_required
def gravar(key: str):
    require_role(current_user, ("ADMIN",))
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "value" not in data:
        raise ValidationError("value é obrigatório")
    with transaction():
        v = set_setting_int(key, data["value"], current_user)
    return jsonify(key=key, value=v)
