from datetime import date, datetime, time
from decimal import Decimal

import pytest

from salao.extensions import db
from salao.core.models import ContaPagar, Comissao
from salao.core.financeiro import (
    add_meses, periodo_mes, calcular_comissoes, aprovar_comissao, gerar_conta_comissao,
    criar_recorrencia, registrar_recebimento,
)
from salao.core.services import transaction, ValidationError


@pytest.mark.parametrize("inicio,n,dia,esperado", [
    (date(2025, 1, 31), 1, None, date(2025, 2, 28)),
    (date(2024, 1, 31), 1, None, date(2024, 2, 29)),
    (date(2025, 1, 31), 2, None, date(2025, 3, 31)),
    (date(2025, 11, 15), 3, None, date(2026, 2, 15)),
    (date(2025, 3, 1), -3, None, date(2024, 12, 1)),
    (date(2025, 4, 1), 0, 31, date(2025, 4, 30)),
])
def test_add_meses_clamps_day(inicio, n, dia, esperado):
    assert add_meses(inicio, n, dia=dia) == esperado


def test_periodo_mes():
    assert periodo_mes("2025-12") == (date(2025, 12, 1), date(2026, 1, 1))
    for invalido in ("2025-13", "dezembro", "2025"):
        with pytest.raises(ValidationError):
            periodo_mes(invalido)


def _concluido_pago(make_appointment, prof, sid, dia, valor=None):
    return make_appointment(prof, sid, dia=dia, status="COMPLETED", payment_status="PAID",
                            payment_amount=valor, payment_date=datetime.combine(dia, time(12, 0)))


def test_commissions_group_paid_completed_appointments(ctx, make_professional, make_service, make_appointment):
    ana, _ = make_professional()
    bia, _ = make_professional(nome="Bia", email="bia@salao.com.br")
    corte = make_service(price="100.00", commission="10")
    cor = make_service(name="Coloração", price="250.00", commission="12.5")
    dia = date(2025, 6, 10)
    _concluido_pago(make_appointment, ana, corte, dia)
    _concluido_pago(make_appointment, ana, cor, dia, valor=Decimal("200.00"))
    _concluido_pago(make_appointment, bia, corte, dia)
    # Fora do cálculo: não pago, não concluído, outro mês
    make_appointment(ana, corte, dia=dia, status="COMPLETED", payment_status="PENDING")
    make_appointment(ana, corte, dia=dia, status="CONFIRMED", payment_status="PAID")
    _concluido_pago(make_appointment, ana, corte, date(2025, 7, 1))

    grupos = {g["profissional_id"]: g for g in calcular_comissoes("2025-06")}
    assert set(grupos) == {ana, bia}
    assert grupos[ana]["total_vendas"] == "300.00"
    assert grupos[ana]["total_comissao"] == "35.00"
    assert len(grupos[ana]["atendimentos"]) == 2
    assert grupos[bia]["total_comissao"] == "10.00"

    so_bia = calcular_comissoes("2025-06", bia)
    assert [g["profissional_id"] for g in so_bia] == [bia]


def test_approve_commission_is_upsert_and_generates_payable(ctx, make_professional, make_service, make_appointment):
    ana, _ = make_professional(dia_pagamento=31)
    sid = make_service(price="100.00", commission="20")
    _concluido_pago(make_appointment, ana, sid, date(2025, 6, 3))

    with transaction():
        c = aprovar_comissao(ana, "2025-06", bonificacoes="15")
        cid = c.id
    with transaction():
        c = aprovar_comissao(ana, "2025-06", bonificacoes="5")
        assert c.id == cid
    c = db.session.get(Comissao, cid)
    assert c.status == "APROVADO"
    assert str(c.total_comissao) == "20.00"
    assert str(c.valor_final) == "25.00"
    assert len(c.atendimentos) == 1
    assert Comissao.query.count() == 1

    with transaction():
        conta_id = gerar_conta_comissao(cid).id
    conta = db.session.get(ContaPagar, conta_id)
    assert conta.categoria == "COMISSAO"
    assert str(conta.valor) == "25.00"
    hoje = date.today()
    assert conta.data_vencimento == add_meses(date(hoje.year, hoje.month, 1), 0, dia=31)
    assert db.session.get(Comissao, cid).conta_pagar_id == conta_id


def test_monthly_recurrence_clamps_to_month_end(ctx):
    with transaction():
        contas = criar_recorrencia({"descricao": "Aluguel", "valor": "1500", "inicio": "2025-01-31",
                                    "parcelas": 3, "categoria": "ALUGUEL"})
        out = [(c.descricao, c.data_vencimento) for c in contas]
    assert out == [
        ("Aluguel (1/3)", date(2025, 1, 31)),
        ("Aluguel (2/3)", date(2025, 2, 28)),
        ("Aluguel (3/3)", date(2025, 3, 31)),
    ]


def test_weekly_and_fixed_day_recurrence(ctx):
    with transaction():
        semanal = criar_recorrencia({"descricao": "Limpeza", "valor": 80, "inicio": "2025-01-30",
                                     "parcelas": 2, "periodicidade": "SEMANAL"})
        fixo = criar_recorrencia({"descricao": "Internet", "valor": 99, "inicio": "2025-01-10",
                                  "parcelas": 2, "dia_vencimento": 5})
        datas = ([c.data_vencimento for c in semanal], [c.data_vencimento for c in fixo])
    assert datas == ([date(2025, 1, 30), date(2025, 2, 6)], [date(2025, 1, 5), date(2025, 2, 5)])


def test_receivable_paid_creates_commission_payable(ctx, make_professional, make_service, make_appointment):
    ana, _ = make_professional()
    sid = make_service(name="Escova", price="80.00", commission="25")
    aid = make_appointment(ana, sid, dia=date(2025, 8, 20), status="COMPLETED", payment_status="PENDING")

    with transaction():
        conta = registrar_recebimento({"id": aid, "payment_status": "PAID", "payment_method": "PIX"})
        conta_id = conta.id
    conta = db.session.get(ContaPagar, conta_id)
    assert conta.categoria == "COMISSAO"
    assert str(conta.valor) == "20.00"
    assert conta.data_vencimento == date(2025, 8, 20)

    # Já pago: nada novo
    with transaction():
        assert registrar_recebimento({"id": aid, "payment_status": "PAID"}) is None
    assert ContaPagar.query.count() == 1


def test_receivable_without_commission_creates_nothing(ctx, make_professional, make_service, make_appointment):
    ana, _ = make_professional()
    aid = make_appointment(ana, make_service(commission="0"), payment_status="PENDING")
    with transaction():
        assert registrar_recebimento({"id": aid, "payment_status": "PAID"}) is None
    assert ContaPagar.query.count() == 0


# ----------------------------
# HTTP
# ----------------------------
def test_payables_crud(auth_client):
    r = auth_client.post("/finance/payables", json={
        "descricao": "Energia", "categoria": "SERVICO", "valor": "350,90", "data_vencimento": "2025-09-10",
    })
    assert r.status_code == 201
    conta = r.get_json()
    assert conta["valor"] == "350.90"
    assert conta["status"] == "PENDENTE"
    assert conta["data_pagamento"] is None

    r = auth_client.post("/finance/payables", json={
        "descricao": "Água", "valor": 80, "data_vencimento": "2025-09-12", "status": "PAGO",
    })
    assert r.get_json()["data_pagamento"] is not None

    r = auth_client.post("/finance/payables", json={"descricao": "Sem data", "valor": 10})
    assert r.status_code == 400
    assert "data_vencimento" in r.get_json()["details"]

    r = auth_client.put("/finance/payables", json={"id": conta["id"], "status": "PAGO", "metodo_pagamento": "PIX"})
    assert r.status_code == 200
    body = r.get_json()
    assert body["status"] == "PAGO"
    assert body["data_pagamento"] is not None
    assert body["descricao"] == "Energia"

    r = auth_client.put("/finance/payables", json={"id": conta["id"], "status": "QUITADO"})
    assert r.status_code == 400
    r = auth_client.put("/finance/payables", json={"status": "PAGO"})
    assert r.status_code == 400

    assert len(auth_client.get("/finance/payables?status=PAGO").get_json()) == 2
    assert len(auth_client.get("/finance/payables?categoria=SERVICO").get_json()) == 1

    assert auth_client.delete(f"/finance/payables?id={conta['id']}").status_code == 200
    assert auth_client.delete(f"/finance/payables?id={conta['id']}").status_code == 404
    assert len(auth_client.get("/finance/payables").get_json()) == 1


def test_recurring_endpoint(auth_client):
    r = auth_client.post("/finance/payables/recurring", json={
        "descricao": "Aluguel", "valor": 1200, "inicio": "2025-01-31", "parcelas": 2,
    })
    assert r.status_code == 201
    body = r.get_json()
    assert body["created"] == 2
    assert body["periodicidade"] == "MENSAL"
    assert [l["data_vencimento"] for l in body["lancamentos"]] == ["2025-01-31", "2025-02-28"]

    r = auth_client.post("/finance/payables/recurring", json={
        "descricao": "X", "valor": 1, "inicio": "2025-01-01", "parcelas": 0,
    })
    assert r.status_code == 400


def test_receivables_and_cash_flow(auth_client, make_professional, make_service, make_appointment):
    ana, _ = make_professional()
    sid = make_service(name="Corte", price="100.00", commission="10")
    hoje = date.today()
    aid = make_appointment(ana, sid, dia=hoje, status="COMPLETED", payment_status="PENDING")

    r = auth_client.get("/finance/receivables?status=PENDING")
    assert [x["id"] for x in r.get_json()] == [aid]

    r = auth_client.put("/finance/receivables", json={"id": aid, "payment_status": "PAID", "payment_method": "PIX"})
    assert r.status_code == 200
    assert r.get_json()["success"] is True
    assert r.get_json()["conta_comissao_id"]

    auth_client.post("/finance/payables", json={
        "descricao": "Produtos", "valor": 30, "data_vencimento": hoje.isoformat(), "status": "PAGO",
    })

    r = auth_client.get("/finance/cash-flow?periodo=1")
    body = r.get_json()
    assert body["resumo"]["total_entradas"] == "100.00"
    assert body["resumo"]["total_saidas"] == "30.00"
    assert body["resumo"]["saldo_atual"] == "70.00"
    assert body["estatisticas_metodos"] == [{"metodo": "PIX", "total": "100.00", "quantidade": 1}]
    assert {m["tipo"] for m in body["movimentacoes"]} == {"ENTRADA", "SAIDA"}

    r = auth_client.get("/finance/commissions")
    assert r.get_json()[0]["total_comissao"] == "10.00"


def test_commission_endpoints(auth_client, make_professional, make_service, make_appointment):
    ana, _ = make_professional()
    sid = make_service(price="100.00", commission="10")
    r = auth_client.put(f"/finance/commissions/services/{sid}", json={"commission_percentage": 30})
    assert r.get_json() == {"id": sid, "commission_percentage": "30.00"}
    r = auth_client.put(f"/finance/commissions/services/{sid}", json={"commission_percentage": 130})
    assert r.status_code == 400

    _concluido_pago(make_appointment, ana, sid, date(2025, 5, 5))
    r = auth_client.post("/finance/commissions/approve", json={"profissional_id": ana, "mes": "2025-05"})
    assert r.status_code == 200
    c = r.get_json()
    assert c["valor_final"] == "30.00"
    assert c["status"] == "APROVADO"

    r = auth_client.post(f"/finance/commissions/{c['id']}/payable")
    assert r.status_code == 201
    assert auth_client.post("/finance/commissions/999/payable").status_code == 404


def test_dashboard_summary(auth_client, make_produto):
    make_produto("Esmalte", quantidade=1, minimo=3)
    auth_client.post("/finance/payables", json={"descricao": "Luz", "valor": 50, "data_vencimento": "2030-01-10"})
    r = auth_client.get("/dashboard")
    body = r.get_json()
    assert body["contas_pagar_em_aberto"] == "50.00"
    assert body["receita_mes_atual"] == "0.00"
    assert body["variacao_percentual"] is None
    assert [p["nome"] for p in body["produtos_abaixo_minimo"]] == ["Esmalte"]


def test_cash_flow_period_bounds(auth_client):
    for periodo in ("100000", "121", "0", "abc"):
        r = auth_client.get(f"/finance/cash-flow?periodo={periodo}")
        assert r.status_code == 400, periodo
        assert "periodo" in r.get_json()["error"]
    assert auth_client.get("/finance/cash-flow?periodo=120").status_code == 200
