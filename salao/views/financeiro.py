# salao/views/financeiro.py
from __future__ import annotations

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from salao.core.forms import (
    validar_json, dados_enviados, ContaPagarForm, RecorrenciaForm, RecebimentoForm, AprovarComissaoForm,
)
from salao.core.services import transaction, ValidationError
from salao.core.financeiro import (
    calcular_comissoes, atualizar_percentual_comissao, aprovar_comissao, gerar_conta_comissao,
    comissao_to_dict, listar_contas_pagar, criar_conta_pagar, atualizar_conta_pagar,
    excluir_conta_pagar, criar_recorrencia, conta_to_dict, listar_recebiveis,
    registrar_recebimento, fluxo_caixa,
)

bp = Blueprint("financeiro", __name__)


def _json() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON inválido")
    return data


# ----------------------------
# Comissões
# ----------------------------
@bp.get("/commissions")
@login_required
def comissoes():
    return jsonify(calcular_comissoes(request.args.get("mes"), request.args.get("profissional_id")))

@bp.put("/commissions/services/<int:service_id>")
@login_required
def percentual_servico(service_id: int):
    data = _json()
    if data.get("commission_percentage") in (None, ""):
        raise ValidationError("commission_percentage é obrigatório")
    with transaction():
        srv = atualizar_percentual_comissao(service_id, data["commission_percentage"], current_user)
        out = {"id": srv.id, "commission_percentage": str(srv.commission_percentage)}
    return jsonify(out)

@bp.post("/commissions/approve")
@login_required
def aprovar():
    form = validar_json(AprovarComissaoForm, _json())
    with transaction():
        c = aprovar_comissao(form.profissional_id.data, form.mes.data, form.bonificacoes.data, current_user)
        out = comissao_to_dict(c)
    return jsonify(out)

@bp.post("/commissions/<int:comissao_id>/payable")
@login_required
def conta_da_comissao(comissao_id: int):
    with transaction():
        conta = gerar_conta_comissao(comissao_id, current_user)
        out = {"conta_pagar_id": conta.id}
    return jsonify(out), 201


# ----------------------------
# Contas a pagar
# ----------------------------
@bp.get("/payables")
@login_required
def contas_pagar():
    contas = listar_contas_pagar(
        status=request.args.get("status"),
        categoria=request.args.get("categoria"),
        de=request.args.get("from"),
        ate=request.args.get("to"),
    )
    return jsonify([conta_to_dict(c) for c in contas])

@bp.post("/payables")
@login_required
def nova_conta():
    form = validar_json(ContaPagarForm, _json())
    with transaction():
        conta = criar_conta_pagar(form.data, current_user)
        out = conta_to_dict(conta)
    return jsonify(out), 201

@bp.put("/payables")
@login_required
def editar_conta():
    data = _json()
    if data.get("id") in (None, ""):
        raise ValidationError("id é obrigatório")
    form = ContaPagarForm.from_json(data)
    # Atualização parcial: valida apenas os campos enviados
    erros = {k: v for k, v in _erros(form).items() if k in data}
    if erros:
        raise ValidationError("Validation error", details=erros)
    with transaction():
        conta = atualizar_conta_pagar(data["id"], dados_enviados(form, data), current_user)
        out = conta_to_dict(conta)
    return jsonify(out)

@bp.delete("/payables")
@login_required
def remover_conta():
    with transaction():
        excluir_conta_pagar(request.args.get("id"), current_user)
    return jsonify(ok=True)

@bp.post("/payables/recurring")
@login_required
def recorrencia():
    form = validar_json(RecorrenciaForm, _json())
    with transaction():
        contas = criar_recorrencia(form.data, current_user)
        out = {
            "created": len(contas),
            "lancamentos": [{"id": c.id, "descricao": c.descricao, "data_vencimento": c.data_vencimento.isoformat()} for c in contas],
            "periodicidade": form.periodicidade.data or "MENSAL",
        }
    return jsonify(out), 201


# ----------------------------
# Contas a receber
# ----------------------------
@bp.get("/receivables")
@login_required
def recebiveis():
    return jsonify(listar_recebiveis(request.args.get("status")))

@bp.put("/receivables")
@login_required
def receber():
    data = _json()
    form = validar_json(RecebimentoForm, data)
    with transaction():
        conta = registrar_recebimento(dados_enviados(form, data), current_user)
        out = {"success": True, "conta_comissao_id": conta.id if conta else None}
    return jsonify(out)


# ----------------------------
# Fluxo de caixa
# ----------------------------
@bp.get("/cash-flow")
@login_required
def fluxo():
    return jsonify(fluxo_caixa(request.args.get("periodo") or 6))


def _erros(form) -> dict:
    form.validate()
    return form.errors
