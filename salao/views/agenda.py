# salao/views/agenda.py
from __future__ import annotations

from flask import Blueprint, request, jsonify, Response
from flask_login import login_required, current_user

from salao.core.forms import (
    validar_json, dados_enviados, ServiceForm, ProfessionalForm, AppointmentForm, AppointmentStatusForm,
    FollowInForm, FollowUpForm,
)
from salao.core.services import transaction, Unauthorized
from salao.core.agenda import (
    criar_servico, listar_servicos, service_to_dict,
    criar_profissional, listar_profissionais, professional_to_dict,
    criar_agendamento, listar_agendamentos, alterar_status_agendamento, appointment_to_dict,
    obter_follow_in, registrar_follow_in, follow_in_to_dict,
    obter_follow_up, registrar_follow_up, follow_up_to_dict,
    feed_profissional,
)

bp = Blueprint("agenda", __name__)


# ----------------------------
# Serviços e profissionais
# ----------------------------
@bp.get("/services")
@login_required
def servicos():
    return jsonify([service_to_dict(s) for s in listar_servicos()])

@bp.post("/services")
@login_required
def novo_servico():
    form = validar_json(ServiceForm, request.get_json(silent=True))
    with transaction():
        out = service_to_dict(criar_servico(form.data, current_user))
    return jsonify(out), 201

@bp.get("/professionals")
@login_required
def profissionais():
    return jsonify([professional_to_dict(p) for p in listar_profissionais()])

@bp.get("/professionals/names")
@login_required
def nomes_profissionais():
    return jsonify([{"id": p.id, "name": p.nome} for p in listar_profissionais()])

@bp.post("/professionals")
@login_required
def novo_profissional():
    form = validar_json(ProfessionalForm, request.get_json(silent=True))
    with transaction():
        out = professional_to_dict(criar_profissional(form.data, current_user), com_token=True)
    return jsonify(out), 201


# ----------------------------
# Agendamentos
# ----------------------------
@bp.get("/appointments")
@login_required
def agendamentos():
    appts = listar_agendamentos(request.args.get("professional_id"), request.args.get("date"))
    return jsonify([appointment_to_dict(a) for a in appts])

@bp.post("/appointments")
@login_required
def novo_agendamento():
    form = validar_json(AppointmentForm, request.get_json(silent=True))
    with transaction():
        out = appointment_to_dict(criar_agendamento(form.data, current_user))
    return jsonify(out), 201

@bp.put("/appointments/<int:appointment_id>/status")
@login_required
def status_agendamento(appointment_id: int):
    form = validar_json(AppointmentStatusForm, request.get_json(silent=True))
    with transaction():
        appt, baixas, alertas = alterar_status_agendamento(appointment_id, form.status.data, current_user)
        out = {"id": appt.id, "status": appt.status, "baixas": baixas, "stock_alerts": alertas}
    return jsonify(out)


# ----------------------------
# Follow-in / follow-up
# ----------------------------
@bp.get("/appointments/<int:appointment_id>/follow-in")
@login_required
def follow_in(appointment_id: int):
    fi = obter_follow_in(appointment_id)
    return jsonify(follow_in_to_dict(fi) if fi else None)

@bp.post("/appointments/<int:appointment_id>/follow-in")
@login_required
def salvar_follow_in(appointment_id: int):
    data = request.get_json(silent=True) or {}
    form = validar_json(FollowInForm, data)
    with transaction():
        out = follow_in_to_dict(registrar_follow_in(appointment_id, dados_enviados(form, data), current_user))
    return jsonify(out)

@bp.get("/appointments/<int:appointment_id>/follow-up")
@login_required
def follow_up(appointment_id: int):
    fu = obter_follow_up(appointment_id)
    return jsonify(follow_up_to_dict(fu) if fu else None)

@bp.post("/appointments/<int:appointment_id>/follow-up")
@login_required
def salvar_follow_up(appointment_id: int):
    data = request.get_json(silent=True) or {}
    form = validar_json(FollowUpForm, data)
    dados = dados_enviados(form, data)
    if "profile_updates" in data:
        dados["profile_updates"] = data["profile_updates"]
    with transaction():
        fu, alertas = registrar_follow_up(appointment_id, dados, current_user)
        out = {**follow_up_to_dict(fu), "stock_alerts": alertas}
    return jsonify(out)


# ----------------------------
# Feed iCalendar (autenticado por token)
# ----------------------------
@bp.get("/calendar/professionals/<professional_id>.ics")
def feed_ics(professional_id):
    try:
        ics = feed_profissional(professional_id, request.args.get("token"))
    except Unauthorized:
        return Response("Unauthorized", status=401, mimetype="text/plain")
    return Response(
        ics,
        status=200,
        mimetype="text/calendar",
        headers={
            "Content-Disposition": f'attachment; filename="agenda-{professional_id}.ics"',
            "Cache-Control": "no-cache",
        },
    )
