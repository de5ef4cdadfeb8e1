# salao/views/orcamentos.py
from __future__ import annotations

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from salao.core.forms import (
    validar_json, dados_enviados, OrcamentoForm, OrcamentoUpdateForm, EnvioOrcamentoForm,
)
from salao.core.services import transaction, ValidationError
from salao.core.orcamentos import (
    criar_orcamento, listar_orcamentos, obter_orcamento, atualizar_orcamento,
    excluir_orcamento, enviar_orcamento, painel_orcamentos, orcamento_to_dict,
)

bp = Blueprint("orcamentos", __name__)


def _json() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON inválido")
    return data


@bp.get("")
@login_required
def lista():
    return jsonify(listar_orcamentos(
        status=request.args.get("status") or None,
        limit=request.args.get("limit", 50),
        offset=request.args.get("offset", 0),
    ))

@bp.post("")
@login_required
def novo():
    form = validar_json(OrcamentoForm, _json())
    with transaction():
        orc = criar_orcamento(form.data, current_user)
        out = orcamento_to_dict(orc)
    return jsonify(out), 201

@bp.get("/dashboard")
@login_required
def painel():
    return jsonify(painel_orcamentos())

@bp.get("/<int:orcamento_id>")
@login_required
def detalhe(orcamento_id: int):
    return jsonify(orcamento_to_dict(obter_orcamento(orcamento_id)))

@bp.put("/<int:orcamento_id>")
@login_required
def editar(orcamento_id: int):
    data = _json()
    form = validar_json(OrcamentoUpdateForm, data, presentes=data.keys())
    with transaction():
        orc = atualizar_orcamento(orcamento_id, dados_enviados(form, data), current_user)
        out = orcamento_to_dict(orc)
    return jsonify(out)

@bp.delete("/<int:orcamento_id>")
@login_required
def remover(orcamento_id: int):
    with transaction():
        excluir_orcamento(orcamento_id, current_user)
    return jsonify(ok=True)

@bp.post("/<int:orcamento_id>/send")
@login_required
def enviar(orcamento_id: int):
    form = validar_json(EnvioOrcamentoForm, _json())
    with transaction():
        out = enviar_orcamento(
            orcamento_id, form.email.data, current_user,
            subject=form.subject.data or None,
            message=form.message.data or None,
        )
    return jsonify(out)
