import logging


ADMIN_EMAIL = "admin@salao.com.br"
ADMIN_PASS = "admin123"


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.get_json() == {"ok": True}


def test_unknown_route_is_json(client):
    r = client.get("/nao-existe")
    assert r.status_code == 404
    assert r.get_json() == {"error": "Not Found"}


def test_login_me_logout(client):
    assert client.get("/auth/me").status_code == 401

    r = client.post("/auth/login", json={"email": ADMIN_EMAIL.upper(), "password": ADMIN_PASS})
    assert r.status_code == 200
    assert r.get_json()["role"] == "ADMIN"

    r = client.get("/auth/me")
    assert r.get_json()["email"] == ADMIN_EMAIL

    assert client.post("/auth/logout").get_json() == {"ok": True}
    assert client.get("/auth/me").status_code == 401


def test_login_failures(client):
    r = client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": "errada123"})
    assert r.status_code == 401
    assert r.get_json()["error"] == "Usuário ou senha incorretos"

    r = client.post("/auth/login", json={"email": "sem-arroba", "password": ""})
    assert r.status_code == 400
    assert set(r.get_json()["details"]) == {"email", "password"}


def test_csrf_token_endpoint(client):
    r = client.get("/auth/csrf")
    assert r.status_code == 200
    assert r.get_json()["csrf_token"]


def test_settings_roundtrip(auth_client):
    r = auth_client.get("/settings/max_capacity")
    assert r.get_json() == {"key": "max_capacity", "value": None}

    r = auth_client.put("/settings/max_capacity", json={"value": 12})
    assert r.get_json() == {"key": "max_capacity", "value": 12}
    assert auth_client.get("/settings/max_capacity").get_json()["value"] == 12

    r = auth_client.put("/settings/max_capacity", json={"value": -3})
    assert r.status_code == 400
    r = auth_client.put("/settings/max_capacity", json={})
    assert r.status_code == 400


def test_settings_unknown_key(auth_client):
    assert auth_client.get("/settings/tema").status_code == 404
    assert auth_client.put("/settings/tema", json={"value": 1}).status_code == 404


def test_settings_write_requires_admin(login_as):
    c = login_as()
    r = c.put("/settings/max_capacity", json={"value": 5})
    assert r.status_code == 403
    assert c.get("/settings/max_capacity").status_code == 200


def test_unexpected_error_in_transaction_is_logged_once(auth_client, monkeypatch, caplog):
    def falha(*args, **kwargs):
        raise RuntimeError("disco cheio")

    monkeypatch.setattr("salao.views.estoque.excluir_vinculo", falha)
    with caplog.at_level(logging.ERROR):
        r = auth_client.delete("/inventory/service-product-links?id=1")
    assert r.status_code == 500
    assert r.get_json() == {"error": "Erro interno do servidor"}

    erros = [rec for rec in caplog.records if rec.levelno >= logging.ERROR]
    assert len(erros) == 1
    assert erros[0].exc_info[0] is RuntimeError
