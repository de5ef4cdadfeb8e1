from datetime import date, time
from decimal import Decimal

import pytest
from flask import has_app_context

from salao import create_app
from salao.extensions import db
from salao.core.models import User, Service, Appointment
from salao.core.services import transaction, criar_produto, criar_vinculo
from salao.core.agenda import criar_profissional

ADMIN_EMAIL = "admin@salao.com.br"
ADMIN_PASS = "admin123"


@pytest.fixture
def app(monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("ADMIN_PASS", ADMIN_PASS)
    app = create_app("config.TestConfig")
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """App context para testes que chamam os serviços diretamente."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(app):
    c = app.test_client()
    r = c.post("/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASS})
    assert r.status_code == 200, r.get_json()
    return c


@pytest.fixture
def login_as(app):
    """Cria um usuário comum e devolve um client autenticado com ele."""
    def _login(email="profissional@salao.com.br", role="PROFESSIONAL"):
        def _create():
            with transaction():
                u = User(nome=email.split("@")[0], email=email, role=role)
                u.set_password("segredo123")
                db.session.add(u)
        _in_ctx(app, _create)
        c = app.test_client()
        r = c.post("/auth/login", json={"email": email, "password": "segredo123"})
        assert r.status_code == 200
        return c
    return _login


def _in_ctx(app, fn):
    if has_app_context():
        return fn()
    with app.app_context():
        return fn()


# ----------------------------
# Builders (devolvem ids)
# ----------------------------
@pytest.fixture
def make_produto(app):
    def _make(nome="Shampoo", quantidade=0, custo="10.00", venda="20.00", minimo=0, validade=None):
        def _create():
            with transaction():
                p = criar_produto(nome, quantidade_minima=minimo, quantidade_atual=quantidade,
                                  preco_custo=custo, preco_venda=venda, validade=validade)
                pid = p.id
            return pid
        return _in_ctx(app, _create)
    return _make


@pytest.fixture
def make_service(app):
    def _make(name="Corte", price="100.00", duration=60, commission="10"):
        def _create():
            with transaction():
                s = Service(name=name, price=Decimal(price), duration_minutes=duration,
                            commission_percentage=Decimal(commission))
                db.session.add(s)
                db.session.flush()
                sid = s.id
            return sid
        return _in_ctx(app, _create)
    return _make


@pytest.fixture
def make_professional(app):
    def _make(nome="Ana", email="ana@salao.com.br", dia_pagamento=10):
        def _create():
            with transaction():
                p = criar_profissional({"nome": nome, "email": email, "dia_pagamento": dia_pagamento})
                out = (p.id, p.calendar_feed_token)
            return out
        return _in_ctx(app, _create)
    return _make


@pytest.fixture
def make_appointment(app):
    def _make(professional_id, service_id, dia=None, inicio=time(9, 0), fim=time(10, 0),
              status="PENDING", notes=None, payment_status=None, payment_amount=None, payment_date=None):
        def _create():
            with transaction():
                a = Appointment(
                    professional_id=professional_id,
                    service_id=service_id,
                    date=dia or date.today(),
                    start_time=inicio,
                    end_time=fim,
                    status=status,
                    notes=notes,
                    payment_status=payment_status,
                    payment_amount=payment_amount,
                    payment_date=payment_date,
                )
                db.session.add(a)
                db.session.flush()
                aid = a.id
            return aid
        return _in_ctx(app, _create)
    return _make


@pytest.fixture
def make_vinculo(app):
    def _make(service_id, produto_id, quantidade=1, obrigatorio=False, baixa_automatica=True):
        def _create():
            with transaction():
                v = criar_vinculo(service_id, produto_id, quantidade=quantidade,
                                  obrigatorio=obrigatorio, baixa_automatica=baixa_automatica)
                vid = v.id
            return vid
        return _in_ctx(app, _create)
    return _make
