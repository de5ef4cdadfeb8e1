# salao/core/agenda.py
from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, date, time, timedelta
from smtplib import SMTPException
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import current_app, render_template
from flask_mail import Message

from salao.extensions import db, mail
from salao.core.models import (
    _as_money, normalize_date, APPOINTMENT_STATUS,
    User, Service, Professional, Appointment, AppointmentFollowIn, AppointmentFollowUp,
    Produto, ServicoProdutoVinculo, ConsumoServicoProduto,
)
from salao.core.services import (
    _ensure, _row_to_dict, _as_int, _id_opcional, audit_log, aplicar_movimentacao,
    ValidationError, InvalidOperation, NotFound, Conflict, Unauthorized,
)

log = logging.getLogger(__name__)

ORIGEM_ATENDIMENTO = "Serviço"

# =============================================================================
# Catálogo
# =============================================================================

def criar_servico(dados: Dict[str, Any], user: Optional[User] = None) -> Service:
    nome = (dados.get("name") or "").strip()
    _ensure(nome, "Nome obrigatório")
    percentual = _as_money(dados.get("commission_percentage") or 0)
    _ensure(0 <= percentual <= 100, "Percentual de comissão deve estar entre 0 e 100")
    preco = _as_money(dados.get("price"))
    _ensure(preco >= 0, "Preço não pode ser negativo")
    srv = Service(
        name=nome,
        price=preco,
        duration_minutes=_as_int(dados.get("duration_minutes") or 60, "duration_minutes", minimo=1),
        commission_percentage=percentual,
    )
    db.session.add(srv)
    db.session.flush()
    audit_log("Service", srv.id, "created", {"name": nome, "price": preco}, user)
    return srv

def listar_servicos() -> List[Service]:
    return Service.query.filter_by(ativo=True).order_by(Service.name.asc()).all()

def service_to_dict(s: Service) -> Dict[str, Any]:
    return _row_to_dict(s, ["id", "name", "price", "duration_minutes", "commission_percentage", "ativo"])

def criar_profissional(dados: Dict[str, Any], user: Optional[User] = None) -> Professional:
    """Reaproveita o usuário do e-mail, se existir; senão cria um sem senha."""
    email = (dados.get("email") or "").strip().lower()
    _ensure(email, "E-mail obrigatório")
    u = User.query.filter_by(email=email).first()
    if u is None:
        nome = (dados.get("nome") or "").strip()
        _ensure(nome, "Nome obrigatório")
        u = User(nome=nome, email=email, role="PROFESSIONAL", phone=dados.get("phone") or None)
        db.session.add(u)
        db.session.flush()
    else:
        _ensure(Professional.query.filter_by(user_id=u.id).first() is None,
                "Usuário já cadastrado como profissional", Conflict)
        if u.role == "CLIENT":
            u.role = "PROFESSIONAL"

    dia = dados.get("dia_pagamento")
    prof = Professional(
        user_id=u.id,
        especialidade=(dados.get("especialidade") or "").strip() or None,
        dia_pagamento=_as_int(dia, "dia_pagamento", minimo=1) if dia else 5,
        calendar_feed_token=secrets.token_urlsafe(24),
    )
    _ensure(prof.dia_pagamento <= 31, "dia_pagamento inválido")
    db.session.add(prof)
    db.session.flush()
    audit_log("Professional", prof.id, "created", {"user_id": u.id}, user)
    return prof

def listar_profissionais() -> List[Professional]:
    return (
        Professional.query.join(User, Professional.user_id == User.id)
        .filter(Professional.ativo.is_(True))
        .order_by(User.nome.asc())
        .all()
    )

def professional_to_dict(p: Professional, com_token: bool = False) -> Dict[str, Any]:
    d = _row_to_dict(p, ["id", "user_id", "especialidade", "dia_pagamento", "ativo"])
    d["nome"] = p.nome
    d["email"] = p.user.email if p.user else None
    if com_token:
        d["calendar_feed_token"] = p.calendar_feed_token
    return d

# =============================================================================
# Agendamentos
# =============================================================================

_HORA = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")

def _parse_hora(value, campo: str) -> time:
    m = _HORA.match(str(value or "").strip())
    _ensure(m, f"{campo} inválido")
    try:
        return time(int(m.group(1)), int(m.group(2)), int(m.group(3) or 0))
    except ValueError:
        raise ValidationError(f"{campo} inválido")

def criar_agendamento(dados: Dict[str, Any], user: Optional[User] = None) -> Appointment:
    prof = db.session.get(Professional, _as_int(dados.get("professional_id"), "professional_id", minimo=1))
    _ensure(prof is not None, "Profissional não encontrado", NotFound)
    srv = db.session.get(Service, _as_int(dados.get("service_id"), "service_id", minimo=1))
    _ensure(srv is not None, "Serviço não encontrado", NotFound)
    cid = _id_opcional(dados.get("client_id"), "client_id")
    if cid:
        _ensure(db.session.get(User, cid) is not None, "Cliente não encontrado", NotFound)

    dia = normalize_date(dados.get("date"))
    _ensure(dia is not None, "date inválida")
    inicio = _parse_hora(dados.get("start_time"), "start_time")
    if dados.get("end_time"):
        fim = _parse_hora(dados["end_time"], "end_time")
    else:
        fim = (datetime.combine(dia, inicio) + timedelta(minutes=srv.duration_minutes or 60)).time()
    _ensure(fim > inicio, "Horário final deve ser posterior ao inicial")

    a = Appointment(
        client_id=cid,
        professional_id=prof.id,
        service_id=srv.id,
        date=dia,
        start_time=inicio,
        end_time=fim,
        status="PENDING",
        notes=(dados.get("notes") or "").strip() or None,
        payment_status="PENDING",
    )
    db.session.add(a)
    db.session.flush()
    audit_log("Appointment", a.id, "created", {"professional_id": prof.id, "service_id": srv.id}, user)
    return a

def listar_agendamentos(professional_id=None, dia=None) -> List[Appointment]:
    q = Appointment.query
    pid = _id_opcional(professional_id, "professional_id")
    if pid:
        q = q.filter(Appointment.professional_id == pid)
    if dia:
        d = normalize_date(dia)
        _ensure(d is not None, "date inválida")
        q = q.filter(Appointment.date == d)
    return q.order_by(Appointment.date.asc(), Appointment.start_time.asc()).all()

def _baixa_automatica(a: Appointment, user: Optional[User]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Baixa os produtos vinculados ao serviço com baixa_automatica.

    A quantidade baixada é limitada ao saldo do produto, então a conclusão
    nunca falha por falta de estoque: o que faltou volta como alerta.
    Cada baixa gera uma saída no razão e um registro de consumo.
    """
    vinculos = (
        ServicoProdutoVinculo.query
        .filter_by(service_id=a.service_id, baixa_automatica=True)
        .order_by(ServicoProdutoVinculo.id.asc())
        .all()
    )
    aplicadas: List[Dict[str, Any]] = []
    alertas: List[Dict[str, Any]] = []
    for v in vinculos:
        produto = db.session.get(Produto, v.produto_id)
        if produto is None:
            alertas.append({"produto_id": v.produto_id, "motivo": "Produto não encontrado"})
            continue
        a_baixar = min(produto.quantidade_atual or 0, v.quantidade)
        if a_baixar <= 0:
            log.warning("Sem estoque para baixa de %s (atendimento %s)", produto.nome, a.id)
            alertas.append({"produto_id": v.produto_id, "motivo": "Sem estoque para baixa"})
            continue

        mov, novo = aplicar_movimentacao(v.produto_id, "saida", a_baixar, ORIGEM_ATENDIMENTO, user)
        db.session.add(ConsumoServicoProduto(
            appointment_id=a.id, service_id=a.service_id, produto_id=v.produto_id, quantidade=a_baixar,
        ))
        aplicadas.append({
            "produto_id": v.produto_id,
            "movimento_id": mov.id,
            "quantidade": a_baixar,
            "quantidade_atual": novo,
        })
        if a_baixar < v.quantidade and v.obrigatorio:
            log.warning("Baixa parcial de %s: %s de %s (atendimento %s)", produto.nome, a_baixar, v.quantidade, a.id)
            alertas.append({"produto_id": v.produto_id, "motivo": "Baixa parcial; estoque insuficiente"})
    return aplicadas, alertas

def _concluir(a: Appointment, user: Optional[User]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    # Concluído é terminal: a baixa de estoque nunca roda duas vezes
    if a.status == "COMPLETED":
        return [], []
    baixas, alertas = _baixa_automatica(a, user)
    anterior = a.status
    a.status = "COMPLETED"
    audit_log("Appointment", a.id, "status",
              {"de": anterior, "para": "COMPLETED", "baixas": len(baixas), "alertas": len(alertas)}, user)
    return baixas, alertas

def _get_agendamento(appointment_id) -> Appointment:
    a = db.session.get(Appointment, _as_int(appointment_id, "id", minimo=1))
    _ensure(a is not None, "Agendamento não encontrado", NotFound)
    return a

def alterar_status_agendamento(appointment_id, status: str, user: Optional[User] = None
                               ) -> Tuple[Appointment, List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Devolve (agendamento, baixas, alertas de estoque)."""
    _ensure(status in APPOINTMENT_STATUS, "Status inválido")
    a = _get_agendamento(appointment_id)
    if a.status == status:
        return a, [], []
    _ensure(a.status != "COMPLETED", "Atendimento já concluído", InvalidOperation)

    if status == "COMPLETED":
        baixas, alertas = _concluir(a, user)
        return a, baixas, alertas
    anterior = a.status
    a.status = status
    audit_log("Appointment", a.id, "status", {"de": anterior, "para": status}, user)
    return a, [], []

def appointment_to_dict(a: Appointment) -> Dict[str, Any]:
    d = _row_to_dict(a, [
        "id", "client_id", "professional_id", "service_id", "date", "start_time", "end_time",
        "status", "notes", "payment_status", "payment_amount", "payment_date", "payment_method",
    ])
    d["service"] = {"id": a.service.id, "name": a.service.name} if a.service else None
    d["professional"] = {"id": a.professional.id, "nome": a.professional.nome} if a.professional else None
    d["client"] = {"id": a.client.id, "nome": a.client.nome} if a.client else None
    return d

# =============================================================================
# Follow-in / follow-up
# =============================================================================

CAMPOS_FOLLOW_IN = (
    "client_mood", "arrived_on_time", "arrival_notes", "coffee_today", "coffee_strength_today",
    "music_today", "temperature_today", "special_requests", "time_constraints", "professional_notes",
)
CAMPOS_FOLLOW_UP = (
    "service_reason", "event_importance", "conversation_topics", "personal_milestones",
    "follow_up_topics", "reminders", "client_satisfaction", "service_quality", "client_feedback",
    "products_used", "products_recommended", "technical_notes", "next_service_suggestion",
)

def obter_follow_in(appointment_id) -> Optional[AppointmentFollowIn]:
    return AppointmentFollowIn.query.filter_by(appointment_id=_as_int(appointment_id, "id", minimo=1)).first()

def obter_follow_up(appointment_id) -> Optional[AppointmentFollowUp]:
    return AppointmentFollowUp.query.filter_by(appointment_id=_as_int(appointment_id, "id", minimo=1)).first()

def _aplicar_campos(obj, dados: Dict[str, Any], campos: Iterable[str]) -> None:
    for k in campos:
        if k in dados:
            v = dados[k]
            setattr(obj, k, (v.strip() or None) if isinstance(v, str) else v)

def registrar_follow_in(appointment_id, dados: Dict[str, Any], user: Optional[User] = None) -> AppointmentFollowIn:
    """Upsert do briefing de chegada; avisa o profissional por e-mail."""
    a = _get_agendamento(appointment_id)
    responsavel = (dados.get("completed_by") or "").strip()
    _ensure(responsavel, "completed_by obrigatório")

    fi = AppointmentFollowIn.query.filter_by(appointment_id=a.id).first()
    if fi is None:
        fi = AppointmentFollowIn(appointment_id=a.id)
        db.session.add(fi)
    fi.client_id = a.client_id
    _aplicar_campos(fi, dados, CAMPOS_FOLLOW_IN)
    fi.completed_at = datetime.utcnow()
    fi.completed_by = responsavel
    db.session.flush()
    audit_log("Appointment", a.id, "follow_in", {"follow_in_id": fi.id}, user)

    _enviar_briefing(a, fi)
    return fi

def _enviar_briefing(a: Appointment, fi: AppointmentFollowIn) -> bool:
    prof = a.professional
    email = prof.user.email if prof and prof.user else None
    if not email:
        return False
    cliente = a.client.nome if a.client else "Cliente"
    servico = a.service.name if a.service else "Serviço"
    msg = Message(
        subject=f"Follow In - {servico} - {cliente} ({a.date.isoformat()})",
        recipients=[email],
        html=render_template("email/follow_in.html", appointment=a, follow_in=fi),
    )
    # O briefing é informativo: falha no envio não desfaz o registro
    try:
        mail.send(msg)
    except (SMTPException, OSError) as e:
        log.warning("Falha ao enviar follow-in do atendimento %s para %s: %s", a.id, email, e)
        return False
    return True

def registrar_follow_up(appointment_id, dados: Dict[str, Any], user: Optional[User] = None
                        ) -> Tuple[AppointmentFollowUp, List[Dict[str, Any]]]:
    """
    Upsert do registro pós-atendimento. Gravar o follow-up conclui o
    atendimento e dispara a baixa automática (só na primeira conclusão).
    Devolve (follow_up, alertas de estoque).
    """
    a = _get_agendamento(appointment_id)
    responsavel = (dados.get("completed_by") or "").strip()
    _ensure(responsavel, "completed_by obrigatório")
    perfil = dados.get("profile_updates")
    _ensure(perfil is None or isinstance(perfil, dict), "profile_updates deve ser um objeto")
    evento = None
    if dados.get("event_date"):
        evento = normalize_date(dados["event_date"])
        _ensure(evento is not None, "event_date inválida")

    fu = AppointmentFollowUp.query.filter_by(appointment_id=a.id).first()
    if fu is None:
        fu = AppointmentFollowUp(appointment_id=a.id)
        db.session.add(fu)
    fu.client_id = a.client_id
    _aplicar_campos(fu, dados, CAMPOS_FOLLOW_UP)
    if "event_date" in dados:
        fu.event_date = evento
    if "profile_updates" in dados:
        fu.profile_updates = perfil
    fu.completed_at = datetime.utcnow()
    fu.completed_by = responsavel

    _, alertas = _concluir(a, user)
    db.session.flush()
    return fu, alertas

def follow_in_to_dict(fi: AppointmentFollowIn) -> Dict[str, Any]:
    return _row_to_dict(fi, ("id", "appointment_id", "client_id") + CAMPOS_FOLLOW_IN + ("completed_at", "completed_by"))

def follow_up_to_dict(fu: AppointmentFollowUp) -> Dict[str, Any]:
    return _row_to_dict(fu, ("id", "appointment_id", "client_id", "event_date") + CAMPOS_FOLLOW_UP
                        + ("profile_updates", "completed_at", "completed_by"))

# =============================================================================
# Feed iCalendar
# =============================================================================

def escape_ics(text: str) -> str:
    return re.sub(r"\r\n|\r|\n", r"\\n", text)

def _ics_local(d: date, t: time) -> str:
    return f"{d:%Y%m%d}T{t:%H%M}00"

def montar_ics(appointments: Iterable[Appointment], agora: Optional[datetime] = None) -> str:
    agora = agora or datetime.utcnow()
    namespace = current_app.config.get("ICS_UID_NAMESPACE", "imperalina")
    linhas = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{current_app.config.get('ICS_PRODID', '-//Imperalina//Appointments//PT-BR')}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
    ]
    dtstamp = f"{agora:%Y%m%dT%H%M%S}Z"
    for a in appointments:
        cliente = a.client.nome if a.client else "Cliente"
        servico = a.service.name if a.service else "Serviço"
        descricao = [f"Cliente: {cliente}", f"Serviço: {servico}", f"Status: {a.status}"]
        if a.notes:
            descricao.append(f"Notas: {a.notes}")
        linhas += [
            "BEGIN:VEVENT",
            f"UID:{a.id}@{namespace}",
            f"DTSTAMP:{dtstamp}",
            f"DTSTART:{_ics_local(a.date, a.start_time)}",
            f"DTEND:{_ics_local(a.date, a.end_time)}",
            f"SUMMARY:{escape_ics(f'Atendimento - {servico} para {cliente}')}",
            f"DESCRIPTION:{escape_ics(chr(10).join(descricao))}",
            f"STATUS:{a.status}",
            "END:VEVENT",
        ]
    linhas.append("END:VCALENDAR")
    return "\r\n".join(linhas) + "\r\n"

def feed_profissional(professional_id, token: Optional[str]) -> str:
    try:
        pid = int(professional_id)
    except (TypeError, ValueError):
        raise Unauthorized("Unauthorized")
    prof = db.session.get(Professional, pid)
    if prof is None or not token or not secrets.compare_digest(str(token).encode(), (prof.calendar_feed_token or "").encode()):
        raise Unauthorized("Unauthorized")
    appts = (
        Appointment.query
        .filter(Appointment.professional_id == prof.id, Appointment.status.in_(("PENDING", "CONFIRMED")))
        .order_by(Appointment.date.asc(), Appointment.start_time.asc())
        .all()
    )
    return montar_ics(appts)
