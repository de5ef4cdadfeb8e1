# salao/core/financeiro.py
from __future__ import annotations

import calendar
import logging
from datetime import datetime, date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from salao.extensions import db
from salao.core.models import (
    _as_money, normalize_date, CONTA_PAGAR_STATUS, PAYMENT_STATUS,
    User, Service, Professional, Appointment, Produto, Fornecedor, PedidoCompra,
    ContaPagar, Comissao, ComissaoAtendimento, Orcamento,
)
from salao.core.services import (
    _ensure, _row_to_dict, _as_int, _id_opcional, audit_log,
    ValidationError, NotFound,
)
from salao.core.orcamentos import status_exibicao

log = logging.getLogger(__name__)

ZERO = Decimal("0.00")
MAX_MESES_FLUXO = 120

# =============================================================================
# Datas
# =============================================================================

def periodo_mes(mes: Optional[str] = None) -> Tuple[date, date]:
    """'YYYY-MM' -> [primeiro dia do mês, primeiro dia do mês seguinte)."""
    if not mes:
        hoje = date.today()
        return date(hoje.year, hoje.month, 1), add_meses(date(hoje.year, hoje.month, 1), 1)
    try:
        y, m = (int(p) for p in str(mes).split("-"))
        inicio = date(y, m, 1)
    except ValueError:
        raise ValidationError("mes deve estar no formato AAAA-MM")
    return inicio, add_meses(inicio, 1)

def add_meses(d: date, n: int, dia: Optional[int] = None) -> date:
    """Soma n meses; o dia é limitado ao fim do mês de destino."""
    total = d.month - 1 + n
    y, m = d.year + total // 12, total % 12 + 1
    ultimo = calendar.monthrange(y, m)[1]
    return date(y, m, min(dia or d.day, ultimo))

def _q2(v: Decimal) -> Decimal:
    return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def valor_atendimento(a: Appointment) -> Decimal:
    if a.payment_amount:
        return _as_money(a.payment_amount)
    return _as_money(a.service.price if a.service else 0)

# =============================================================================
# Comissões
# =============================================================================

def calcular_comissoes(mes: Optional[str] = None, profissional_id=None) -> List[Dict[str, Any]]:
    inicio, fim = periodo_mes(mes)
    q = Appointment.query.filter(
        Appointment.status == "COMPLETED",
        Appointment.payment_status == "PAID",
        Appointment.date >= inicio,
        Appointment.date < fim,
    )
    pid = _id_opcional(profissional_id, "profissional_id")
    if pid:
        q = q.filter(Appointment.professional_id == pid)

    grupos: Dict[int, Dict[str, Any]] = {}
    for a in q.order_by(Appointment.date.asc(), Appointment.id.asc()):
        valor = valor_atendimento(a)
        percentual = _as_money(a.service.commission_percentage if a.service else 0)
        comissao = _q2(valor * percentual / 100)
        g = grupos.setdefault(a.professional_id, {
            "profissional_id": a.professional_id,
            "profissional_nome": a.professional.nome if a.professional else "",
            "total_vendas": ZERO,
            "total_comissao": ZERO,
            "atendimentos": [],
        })
        g["total_vendas"] += valor
        g["total_comissao"] += comissao
        g["atendimentos"].append({
            "id": a.id,
            "data": a.date.isoformat(),
            "cliente_nome": a.client.nome if a.client else "",
            "servico_nome": a.service.name if a.service else "",
            "valor_servico": str(valor),
            "percentual_comissao": str(percentual),
            "valor_comissao": str(comissao),
            "data_pagamento": a.payment_date.isoformat() if a.payment_date else None,
        })
    out = list(grupos.values())
    for g in out:
        g["total_vendas"] = str(g["total_vendas"])
        g["total_comissao"] = str(g["total_comissao"])
    return out

def atualizar_percentual_comissao(service_id, percentual, user: Optional[User] = None) -> Service:
    srv = db.session.get(Service, _as_int(service_id, "service_id", minimo=1))
    _ensure(srv is not None, "Serviço não encontrado", NotFound)
    p = _as_money(percentual)
    _ensure(Decimal("0") <= p <= Decimal("100"), "Percentual deve estar entre 0 e 100")
    srv.commission_percentage = p
    audit_log("Service", srv.id, "updated", {"commission_percentage": p}, user)
    return srv

def aprovar_comissao(profissional_id, mes: str, bonificacoes=None, user: Optional[User] = None) -> Comissao:
    """Upsert da comissão do período, recalculada a partir dos atendimentos."""
    pid = _as_int(profissional_id, "profissional_id", minimo=1)
    _ensure(db.session.get(Professional, pid) is not None, "Profissional não encontrado", NotFound)
    inicio, fim = periodo_mes(mes)
    grupos = calcular_comissoes(mes, pid)
    grupo = grupos[0] if grupos else {"total_vendas": "0", "total_comissao": "0", "atendimentos": []}
    bonus = _as_money(bonificacoes or 0)

    c = Comissao.query.filter_by(professional_id=pid, periodo_inicio=inicio, periodo_fim=fim).first()
    if c is None:
        c = Comissao(professional_id=pid, periodo_inicio=inicio, periodo_fim=fim)
        db.session.add(c)
    c.total_atendimentos = len(grupo["atendimentos"])
    c.total_faturamento = _as_money(grupo["total_vendas"])
    c.total_comissao = _as_money(grupo["total_comissao"])
    c.bonificacoes = bonus
    c.valor_final = c.total_comissao + bonus
    c.status = "APROVADO"
    c.atendimentos = [
        ComissaoAtendimento(
            appointment_id=a["id"],
            valor_servico=_as_money(a["valor_servico"]),
            percentual_comissao=_as_money(a["percentual_comissao"]),
            valor_comissao=_as_money(a["valor_comissao"]),
        )
        for a in grupo["atendimentos"]
    ]
    db.session.flush()
    audit_log("Comissao", c.id, "approved", {"valor_final": c.valor_final}, user)
    return c

def gerar_conta_comissao(comissao_id, user: Optional[User] = None) -> ContaPagar:
    _ensure(comissao_id not in (None, ""), "comissao_id é obrigatório")
    c = db.session.get(Comissao, _as_int(comissao_id, "comissao_id", minimo=1))
    _ensure(c is not None, "Comissão não encontrada", NotFound)
    hoje = date.today()
    dia = c.professional.dia_pagamento if c.professional else 5
    vencimento = add_meses(date(hoje.year, hoje.month, 1), 0, dia=dia)

    conta = ContaPagar(
        descricao=f"Comissão {c.professional.nome if c.professional else c.professional_id} - {hoje:%m/%Y}",
        categoria="COMISSAO",
        valor=_as_money(c.valor_final),
        data_vencimento=vencimento,
        observacoes=f"Período: {c.periodo_inicio.isoformat()} a {c.periodo_fim.isoformat()}",
        status="PENDENTE",
    )
    db.session.add(conta)
    db.session.flush()
    c.conta_pagar_id = conta.id
    audit_log("ContaPagar", conta.id, "created", {"comissao_id": c.id, "valor": conta.valor}, user)
    return conta

def comissao_to_dict(c: Comissao) -> Dict[str, Any]:
    return _row_to_dict(c, [
        "id", "professional_id", "periodo_inicio", "periodo_fim", "total_atendimentos",
        "total_faturamento", "total_comissao", "bonificacoes", "valor_final", "status", "conta_pagar_id",
    ])

# =============================================================================
# Contas a pagar
# =============================================================================

def listar_contas_pagar(status=None, categoria=None, de=None, ate=None) -> List[ContaPagar]:
    q = ContaPagar.query
    if status and status != "ALL":
        _ensure(status in CONTA_PAGAR_STATUS, "Status inválido")
        q = q.filter(ContaPagar.status == status)
    if categoria and categoria != "ALL":
        q = q.filter(ContaPagar.categoria == categoria)
    d_ini, d_fim = normalize_date(de), normalize_date(ate)
    if d_ini:
        q = q.filter(ContaPagar.data_vencimento >= d_ini)
    if d_fim:
        q = q.filter(ContaPagar.data_vencimento <= d_fim)
    return q.order_by(ContaPagar.data_vencimento.desc(), ContaPagar.id.desc()).all()

def _checar_referencias(fornecedor_id, pedido_compra_id) -> Tuple[Optional[int], Optional[PedidoCompra]]:
    fid = _id_opcional(fornecedor_id, "fornecedor_id")
    if fid:
        _ensure(db.session.get(Fornecedor, fid) is not None, "Fornecedor não encontrado", NotFound)
    pedido = None
    pcid = _id_opcional(pedido_compra_id, "pedido_compra_id")
    if pcid:
        pedido = db.session.get(PedidoCompra, pcid)
        _ensure(pedido is not None, "Pedido de compra não encontrado", NotFound)
    return fid, pedido

def criar_conta_pagar(dados: Dict[str, Any], user: Optional[User] = None) -> ContaPagar:
    fid, pedido = _checar_referencias(dados.get("fornecedor_id"), dados.get("pedido_compra_id"))
    valor = dados.get("valor")
    if not valor and pedido is not None:
        valor = _as_money(pedido.produto.preco_custo) * pedido.quantidade
    _ensure(valor is not None, "valor é obrigatório")
    vencimento = normalize_date(dados.get("data_vencimento"))
    _ensure(vencimento is not None, "data_vencimento inválida")
    descricao = (dados.get("descricao") or "").strip()
    _ensure(descricao, "descricao é obrigatória")

    conta = ContaPagar(
        descricao=descricao,
        categoria=dados.get("categoria") or "OUTROS",
        valor=_as_money(valor),
        data_vencimento=vencimento,
        status=dados.get("status") or "PENDENTE",
        metodo_pagamento=dados.get("metodo_pagamento") or None,
        observacoes=dados.get("observacoes") or None,
        fornecedor_id=fid,
        pedido_compra_id=pedido.id if pedido else None,
    )
    if conta.status == "PAGO":
        conta.data_pagamento = datetime.utcnow()
    db.session.add(conta)
    db.session.flush()
    audit_log("ContaPagar", conta.id, "created", {"valor": conta.valor, "categoria": conta.categoria}, user)
    return conta

def atualizar_conta_pagar(conta_id, dados: Dict[str, Any], user: Optional[User] = None) -> ContaPagar:
    conta = db.session.get(ContaPagar, _as_int(conta_id, "id", minimo=1))
    _ensure(conta is not None, "Conta não encontrada", NotFound)

    for campo in ("descricao", "categoria", "metodo_pagamento", "observacoes"):
        if campo in dados:
            setattr(conta, campo, dados[campo] or None)
    _ensure(conta.descricao, "descricao é obrigatória")
    if dados.get("valor") is not None:
        conta.valor = _as_money(dados["valor"])
    if "data_vencimento" in dados:
        venc = normalize_date(dados["data_vencimento"])
        _ensure(venc is not None, "data_vencimento inválida")
        conta.data_vencimento = venc
    if "fornecedor_id" in dados or "pedido_compra_id" in dados:
        fid, pedido = _checar_referencias(dados.get("fornecedor_id"), dados.get("pedido_compra_id"))
        if "fornecedor_id" in dados:
            conta.fornecedor_id = fid
        if "pedido_compra_id" in dados:
            conta.pedido_compra_id = pedido.id if pedido else None
    if dados.get("status"):
        _ensure(dados["status"] in CONTA_PAGAR_STATUS, "Status inválido")
        conta.status = dados["status"]
        if conta.status == "PAGO" and not conta.data_pagamento:
            conta.data_pagamento = datetime.utcnow()
    if dados.get("data_pagamento"):
        pago_em = normalize_date(dados["data_pagamento"])
        _ensure(pago_em is not None, "data_pagamento inválida")
        conta.data_pagamento = datetime.combine(pago_em, datetime.min.time())

    audit_log("ContaPagar", conta.id, "updated", {"campos": sorted(dados.keys())}, user)
    return conta

def excluir_conta_pagar(conta_id, user: Optional[User] = None) -> None:
    _ensure(conta_id not in (None, ""), "id é obrigatório")
    conta = db.session.get(ContaPagar, _as_int(conta_id, "id", minimo=1))
    _ensure(conta is not None, "Conta não encontrada", NotFound)
    Comissao.query.filter_by(conta_pagar_id=conta.id).update({"conta_pagar_id": None})
    audit_log("ContaPagar", conta.id, "deleted", {"descricao": conta.descricao}, user)
    db.session.delete(conta)

def criar_recorrencia(dados: Dict[str, Any], user: Optional[User] = None) -> List[ContaPagar]:
    """
    Gera as parcelas "<descricao> (i/n)". MENSAL soma meses (dia_vencimento
    substitui o dia); SEMANAL e QUINZENAL somam 7 e 14 dias.
    """
    descricao = (dados.get("descricao") or "").strip()
    _ensure(descricao, "descricao é obrigatória")
    inicio = normalize_date(dados.get("inicio"))
    _ensure(inicio is not None, "Data de início inválida")
    parcelas = _as_int(dados.get("parcelas"), "parcelas", minimo=1)
    periodicidade = dados.get("periodicidade") or "MENSAL"
    _ensure(periodicidade in ("MENSAL", "SEMANAL", "QUINZENAL"), "Periodicidade inválida")
    dia = dados.get("dia_vencimento")
    if dia is not None:
        dia = _as_int(dia, "dia_vencimento", minimo=1)
        _ensure(dia <= 31, "dia_vencimento inválido")
    fid, _ = _checar_referencias(dados.get("fornecedor_id"), None)
    valor = _as_money(dados.get("valor"))

    contas = []
    for i in range(parcelas):
        if periodicidade == "SEMANAL":
            venc = inicio + timedelta(days=7 * i)
        elif periodicidade == "QUINZENAL":
            venc = inicio + timedelta(days=14 * i)
        else:
            venc = add_meses(inicio, i, dia=dia)
        conta = ContaPagar(
            descricao=f"{descricao} ({i + 1}/{parcelas})",
            categoria=dados.get("categoria") or "OUTROS",
            valor=valor,
            data_vencimento=venc,
            fornecedor_id=fid,
            observacoes=dados.get("observacoes") or None,
            status="PENDENTE",
        )
        db.session.add(conta)
        contas.append(conta)
    db.session.flush()
    audit_log("ContaPagar", contas[0].id, "recurring", {"parcelas": parcelas, "periodicidade": periodicidade}, user)
    return contas

def conta_to_dict(c: ContaPagar) -> Dict[str, Any]:
    d = _row_to_dict(c, [
        "id", "descricao", "categoria", "valor", "data_vencimento", "data_pagamento", "status",
        "metodo_pagamento", "observacoes", "fornecedor_id", "pedido_compra_id",
    ])
    d["fornecedor"] = {"id": c.fornecedor.id, "nome_fantasia": c.fornecedor.nome_fantasia} if c.fornecedor else None
    return d

# =============================================================================
# Contas a receber
# =============================================================================

def listar_recebiveis(status: Optional[str] = None) -> List[Dict[str, Any]]:
    q = Appointment.query.filter(Appointment.payment_status.isnot(None))
    if status and status != "ALL":
        _ensure(status in PAYMENT_STATUS, "Status inválido")
        q = q.filter(Appointment.payment_status == status)
    out = []
    for a in q.order_by(Appointment.date.desc(), Appointment.id.desc()):
        out.append({
            "id": a.id,
            "cliente_nome": a.client.nome if a.client else "",
            "cliente_email": a.client.email if a.client else "",
            "cliente_telefone": (a.client.phone or "") if a.client else "",
            "servico_nome": a.service.name if a.service else "",
            "valor_original": str(_as_money(a.service.price if a.service else 0)),
            "valor_pago": str(_as_money(a.payment_amount)),
            "data_vencimento": a.date.isoformat(),
            "data_pagamento": a.payment_date.isoformat() if a.payment_date else None,
            "status": a.payment_status,
            "metodo_pagamento": a.payment_method,
            "observacoes": a.payment_notes,
            "profissional_nome": a.professional.nome if a.professional else "",
        })
    return out

def registrar_recebimento(dados: Dict[str, Any], user: Optional[User] = None) -> Optional[ContaPagar]:
    """Atualiza o pagamento do atendimento; ao virar PAID gera a conta de comissão."""
    a = db.session.get(Appointment, _as_int(dados.get("id"), "id", minimo=1))
    _ensure(a is not None, "Atendimento não encontrado", NotFound)
    anterior = a.payment_status

    if dados.get("payment_status"):
        _ensure(dados["payment_status"] in PAYMENT_STATUS, "Status inválido")
        a.payment_status = dados["payment_status"]
    if dados.get("payment_amount") is not None:
        a.payment_amount = _as_money(dados["payment_amount"])
    if dados.get("payment_date"):
        pago_em = normalize_date(dados["payment_date"])
        _ensure(pago_em is not None, "payment_date inválida")
        a.payment_date = datetime.combine(pago_em, datetime.min.time())
    elif a.payment_status == "PAID" and not a.payment_date:
        a.payment_date = datetime.utcnow()
    for campo in ("payment_method", "payment_notes"):
        if campo in dados:
            setattr(a, campo, dados[campo] or None)
    audit_log("Appointment", a.id, "payment", {"de": anterior, "para": a.payment_status}, user)

    if a.payment_status != "PAID" or anterior == "PAID":
        return None
    valor = valor_atendimento(a)
    percentual = _as_money(a.service.commission_percentage if a.service else 0)
    comissao = _q2(valor * percentual / 100)
    if comissao <= 0:
        return None
    conta = ContaPagar(
        descricao=f"Comissão de {a.service.name if a.service else 'serviço'} - {a.professional.nome if a.professional else 'Profissional'}",
        categoria="COMISSAO",
        valor=comissao,
        data_vencimento=a.date or date.today(),
        observacoes=f"Gerado pelo recebimento do atendimento {a.id}",
        status="PENDENTE",
    )
    db.session.add(conta)
    db.session.flush()
    log.info("Conta de comissão %s criada para o atendimento %s", conta.id, a.id)
    return conta

# =============================================================================
# Fluxo de caixa e painel
# =============================================================================

def fluxo_caixa(periodo=6) -> Dict[str, Any]:
    meses = _as_int(periodo or 6, "periodo", minimo=1)
    _ensure(meses <= MAX_MESES_FLUXO, f"periodo deve estar entre 1 e {MAX_MESES_FLUXO} meses")
    hoje = date.today()
    inicio = add_meses(date(hoje.year, hoje.month, 1), -(meses - 1))
    fim = add_meses(date(hoje.year, hoje.month, 1), 1)
    dt_ini, dt_fim = datetime.combine(inicio, datetime.min.time()), datetime.combine(fim, datetime.min.time())

    por_mes: Dict[str, Dict[str, Decimal]] = {}
    def _mes(chave: str) -> Dict[str, Decimal]:
        return por_mes.setdefault(chave, {"entradas": ZERO, "saidas": ZERO})

    movimentacoes = []
    metodos: Dict[str, Dict[str, Any]] = {}
    atendimentos = Appointment.query.filter(
        Appointment.payment_status.isnot(None),
        Appointment.date >= inicio,
        Appointment.date < fim,
    )
    for a in atendimentos:
        quando = a.payment_date or datetime.combine(a.date, datetime.min.time())
        valor = valor_atendimento(a)
        if a.payment_status == "PAID":
            _mes(f"{quando:%Y-%m}")["entradas"] += valor
            if a.payment_method:
                m = metodos.setdefault(a.payment_method, {"metodo": a.payment_method, "total": ZERO, "quantidade": 0})
                m["total"] += valor
                m["quantidade"] += 1
        movimentacoes.append({
            "id": a.id,
            "data": quando.isoformat(),
            "tipo": "ENTRADA" if a.payment_status == "PAID" else "PENDENTE",
            "descricao": f"{a.service.name if a.service else 'Serviço'} - {a.client.nome if a.client else 'Cliente'}",
            "valor": str(valor),
            "metodo": a.payment_method or "Não informado",
            "status": a.payment_status,
        })

    pagas = ContaPagar.query.filter(
        ContaPagar.status == "PAGO",
        ContaPagar.data_pagamento >= dt_ini,
        ContaPagar.data_pagamento < dt_fim,
    )
    for c in pagas:
        _mes(f"{c.data_pagamento:%Y-%m}")["saidas"] += _as_money(c.valor)
        movimentacoes.append({
            "id": c.id,
            "data": c.data_pagamento.isoformat(),
            "tipo": "SAIDA",
            "descricao": c.descricao,
            "valor": str(_as_money(c.valor)),
            "metodo": c.metodo_pagamento or "Não informado",
            "status": c.status,
        })

    evolucao = []
    for chave in sorted(por_mes):
        e, s = por_mes[chave]["entradas"], por_mes[chave]["saidas"]
        evolucao.append({"mes": chave, "entradas": str(e), "saidas": str(s), "saldo": str(e - s)})
    total_e = sum((v["entradas"] for v in por_mes.values()), ZERO)
    total_s = sum((v["saidas"] for v in por_mes.values()), ZERO)

    return {
        "resumo": {
            "total_entradas": str(total_e),
            "total_saidas": str(total_s),
            "saldo_atual": str(total_e - total_s),
            "periodo": f"{inicio:%m/%Y} - {hoje:%m/%Y}",
        },
        "evolucao_mensal": evolucao,
        "movimentacoes": sorted(movimentacoes, key=lambda m: m["data"], reverse=True),
        "estatisticas_metodos": [
            {"metodo": m["metodo"], "total": str(m["total"]), "quantidade": m["quantidade"]}
            for m in metodos.values()
        ],
    }

def _receita_paga(inicio: date, fim: date) -> Decimal:
    q = Appointment.query.filter(
        Appointment.payment_status == "PAID",
        Appointment.date >= inicio,
        Appointment.date < fim,
    )
    return sum((valor_atendimento(a) for a in q), ZERO)

def resumo_painel() -> Dict[str, Any]:
    hoje = date.today()
    ini_mes = date(hoje.year, hoje.month, 1)
    ini_anterior = add_meses(ini_mes, -1)
    receita_atual = _receita_paga(ini_mes, add_meses(ini_mes, 1))
    receita_anterior = _receita_paga(ini_anterior, ini_mes)
    variacao = None
    if receita_anterior > 0:
        variacao = str(_q2((receita_atual - receita_anterior) * 100 / receita_anterior))

    abertas = ContaPagar.query.filter(ContaPagar.status.in_(("PENDENTE", "ATRASADO")))
    total_aberto = sum((_as_money(c.valor) for c in abertas), ZERO)

    orcamentos: Dict[str, int] = {"PENDENTE": 0, "APROVADO": 0, "REJEITADO": 0, "EXPIRADO": 0}
    for (status,) in db.session.query(Orcamento.status):
        orcamentos[status_exibicao(status)] += 1

    abaixo = (
        Produto.query
        .filter(Produto.ativo.is_(True), Produto.quantidade_atual < Produto.quantidade_minima)
        .order_by(Produto.nome.asc())
        .all()
    )
    return {
        "receita_mes_atual": str(receita_atual),
        "receita_mes_anterior": str(receita_anterior),
        "variacao_percentual": variacao,
        "contas_pagar_em_aberto": str(total_aberto),
        "orcamentos_por_status": orcamentos,
        "produtos_abaixo_minimo": [
            {"id": p.id, "nome": p.nome, "quantidade_atual": p.quantidade_atual, "quantidade_minima": p.quantidade_minima}
            for p in abaixo
        ],
    }
