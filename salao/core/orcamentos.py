# salao/core/orcamentos.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from smtplib import SMTPException
from typing import Any, Dict, List, Optional, Tuple

from flask import render_template
from flask_mail import Message

from salao.extensions import db, mail
from salao.core.models import (
    _as_money, normalize_date, ORCAMENTO_STATUS,
    User, Service, Orcamento, OrcamentoItem,
)
from salao.core.services import (
    _ensure, _row_to_dict, _as_int, audit_log,
    NotFound, Forbidden, Internal,
)

log = logging.getLogger(__name__)

STATUS_FINAIS = ("APROVADO", "REJEITADO", "EXPIRADO")

CAMPOS_CABECALHO = (
    "client_id", "client_name", "client_email", "client_phone", "client_address",
    "dados_empresa", "observacoes", "termos_condicoes",
)

# =============================================================================
# Cálculo
# =============================================================================

def status_exibicao(status: str) -> str:
    """RASCUNHO e ENVIADO aparecem como PENDENTE no painel."""
    return status if status in STATUS_FINAIS else "PENDENTE"

def calcular_totais(itens: List[Dict[str, Any]], desconto=None) -> Tuple[Decimal, Decimal, Decimal]:
    # valor_total de cada item é aceito como enviado
    subtotal = sum((_as_money(i.get("valor_total")) for i in itens), Decimal("0.00"))
    desconto = _as_money(desconto or 0)
    _ensure(desconto >= 0, "Desconto não pode ser negativo")
    _ensure(desconto <= subtotal, "Desconto maior que o subtotal")
    return subtotal, desconto, subtotal - desconto

def _numero_orcamento(orc: Orcamento) -> str:
    ano = (orc.created_at or datetime.utcnow()).year
    return f"ORC-{ano}-{orc.id:05d}"

def _inserir_itens_orcamento(orc: Orcamento, itens: List[Dict[str, Any]]) -> None:
    for idx, it in enumerate(itens, start=1):
        sid = it.get("service_id") or None
        if sid:
            _ensure(db.session.get(Service, sid) is not None, f"Serviço {sid} não encontrado", NotFound)
        orc.itens.append(OrcamentoItem(
            service_id=sid,
            descricao=(it.get("descricao") or "").strip(),
            quantidade=_as_int(it.get("quantidade"), "quantidade", minimo=1),
            valor_unitario=_as_money(it.get("valor_unitario")),
            valor_total=_as_money(it.get("valor_total")),
            ordem=it.get("ordem") or idx,
        ))
    db.session.flush()

def _checar_dono(orc: Orcamento, user: Optional[User]) -> None:
    if user is None:
        raise Forbidden("Permissão negada")
    if orc.created_by_id != user.id and user.role != "ADMIN":
        raise Forbidden("Permissão negada")

# =============================================================================
# CRUD
# =============================================================================

def criar_orcamento(dados: Dict[str, Any], user: Optional[User]) -> Orcamento:
    """
    Cria cabeçalho e itens na mesma transação; se algum item falhar,
    o cabeçalho é desfeito junto no rollback de transaction().
    """
    itens = dados.get("itens") or []
    _ensure(itens, "Inclua pelo menos 1 item")
    subtotal, desconto, total = calcular_totais(itens, dados.get("desconto"))
    validade = normalize_date(dados.get("data_validade"))
    _ensure(validade is not None, "data_validade inválida")

    orc = Orcamento(
        subtotal=subtotal,
        desconto=desconto,
        total=total,
        data_validade=validade,
        status="RASCUNHO",
        created_by_id=getattr(user, "id", None),
    )
    for campo in CAMPOS_CABECALHO:
        valor = dados.get(campo)
        setattr(orc, campo, valor.strip() if isinstance(valor, str) else valor)
    orc.client_email = (orc.client_email or "").lower()
    _ensure(orc.client_name, "client_name obrigatório")
    _ensure(orc.dados_empresa, "dados_empresa obrigatório")

    db.session.add(orc)
    db.session.flush()
    orc.numero_orcamento = _numero_orcamento(orc)

    _inserir_itens_orcamento(orc, itens)
    audit_log("Orcamento", orc.id, "created", {"numero": orc.numero_orcamento, "total": total}, user)
    return orc

def obter_orcamento(orcamento_id) -> Orcamento:
    orc = db.session.get(Orcamento, _as_int(orcamento_id, "id", minimo=1))
    _ensure(orc is not None, "Orçamento não encontrado", NotFound)
    return orc

def listar_orcamentos(status: Optional[str] = None, limit=50, offset=0) -> Dict[str, Any]:
    limit = min(_as_int(limit, "limit", minimo=1), 200)
    offset = _as_int(offset, "offset", minimo=0)
    q = Orcamento.query
    if status:
        _ensure(status in ORCAMENTO_STATUS, "Status inválido")
        q = q.filter(Orcamento.status == status)
    total = q.count()
    rows = q.order_by(Orcamento.created_at.desc(), Orcamento.id.desc()).offset(offset).limit(limit).all()
    return {"data": [orcamento_to_dict(o) for o in rows], "count": total, "limit": limit, "offset": offset}

def atualizar_orcamento(orcamento_id, dados: Dict[str, Any], user: Optional[User]) -> Orcamento:
    orc = obter_orcamento(orcamento_id)
    _checar_dono(orc, user)

    for campo in CAMPOS_CABECALHO:
        if campo in dados:
            valor = dados[campo]
            setattr(orc, campo, valor.strip() if isinstance(valor, str) else valor)
    if "client_email" in dados:
        orc.client_email = (orc.client_email or "").lower()
    if "data_validade" in dados:
        validade = normalize_date(dados["data_validade"])
        _ensure(validade is not None, "data_validade inválida")
        orc.data_validade = validade
    if dados.get("status"):
        _ensure(dados["status"] in ORCAMENTO_STATUS, "Status inválido")
        orc.status = dados["status"]

    desconto = dados["desconto"] if dados.get("desconto") is not None else orc.desconto
    if "itens" in dados:
        itens = dados["itens"] or []
        _ensure(itens, "Inclua pelo menos 1 item")
        subtotal, desconto, total = calcular_totais(itens, desconto)
        orc.itens = []
        db.session.flush()
        _inserir_itens_orcamento(orc, itens)
    else:
        subtotal = _as_money(orc.subtotal)
        desconto = _as_money(desconto)
        _ensure(desconto <= subtotal, "Desconto maior que o subtotal")
        total = subtotal - desconto
    orc.subtotal, orc.desconto, orc.total = subtotal, desconto, total

    audit_log("Orcamento", orc.id, "updated", {"campos": sorted(dados.keys()), "total": total}, user)
    return orc

def excluir_orcamento(orcamento_id, user: Optional[User]) -> None:
    orc = obter_orcamento(orcamento_id)
    _checar_dono(orc, user)
    audit_log("Orcamento", orc.id, "deleted", {"numero": orc.numero_orcamento}, user)
    db.session.delete(orc)

def enviar_orcamento(orcamento_id, email: str, user: Optional[User],
                     subject: Optional[str] = None, message: Optional[str] = None) -> Dict[str, Any]:
    orc = obter_orcamento(orcamento_id)
    _checar_dono(orc, user)
    email = (email or "").strip().lower()
    _ensure(email, "E-mail obrigatório")

    html = render_template("email/orcamento.html", orcamento=orc, itens=orc.itens)
    msg = Message(
        subject=subject or f"Orçamento {orc.numero_orcamento}",
        recipients=[email],
        html=html,
        body=message or f"Segue o orçamento {orc.numero_orcamento}.",
    )
    try:
        mail.send(msg)
    except (SMTPException, OSError) as e:
        log.error("Falha ao enviar orçamento %s para %s: %s", orc.id, email, e)
        raise Internal("Falha ao enviar e-mail") from e

    agora = datetime.utcnow()
    orc.status = "ENVIADO"
    orc.enviado_em = agora
    orc.enviado_para = email
    audit_log("Orcamento", orc.id, "sent", {"para": email}, user)
    log.info("Orçamento %s enviado para %s", orc.numero_orcamento, email)
    return {"message": "Orçamento enviado", "sent_to": email, "sent_at": agora.isoformat()}

def painel_orcamentos(limit: int = 100) -> Dict[str, Any]:
    rows = (
        Orcamento.query
        .order_by(Orcamento.data_validade.desc(), Orcamento.id.desc())
        .limit(limit)
        .all()
    )
    contagem: Dict[str, int] = {"PENDENTE": 0, "APROVADO": 0, "REJEITADO": 0, "EXPIRADO": 0}
    data = []
    for o in rows:
        d = orcamento_to_dict(o, com_itens=False)
        contagem[d["status_exibicao"]] += 1
        data.append(d)
    return {"data": data, "por_status": contagem}

# =============================================================================
# Serialização
# =============================================================================

def item_to_dict(i: OrcamentoItem) -> Dict[str, Any]:
    d = _row_to_dict(i, ["id", "service_id", "descricao", "quantidade", "valor_unitario", "valor_total", "ordem"])
    d["service"] = {"id": i.service.id, "name": i.service.name} if i.service else None
    return d

def orcamento_to_dict(o: Orcamento, com_itens: bool = True) -> Dict[str, Any]:
    d = _row_to_dict(o, [
        "id", "numero_orcamento", "client_id", "client_name", "client_email", "client_phone",
        "client_address", "dados_empresa", "subtotal", "desconto", "total", "data_validade",
        "status", "observacoes", "termos_condicoes", "enviado_em", "enviado_para",
        "created_by_id", "created_at",
    ])
    d["status_exibicao"] = status_exibicao(o.status)
    if com_itens:
        d["itens"] = [item_to_dict(i) for i in o.itens]
    return d
