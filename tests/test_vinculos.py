import pytest

from salao.extensions import db
from salao.core.models import ServicoProdutoVinculo
from salao.core.services import (
    transaction, criar_vinculo, atualizar_vinculo, excluir_vinculo, listar_vinculos,
    _quantidade_vinculo, Conflict, NotFound, ValidationError,
)


@pytest.mark.parametrize("entrada,esperado", [
    (2, 2), (2.3, 3), ("4", 4), ("abc", 1), (-1, 1), (0, 1), (None, 1), (True, 1), ("inf", 1),
])
def test_link_quantity_normalization(entrada, esperado):
    assert _quantidade_vinculo(entrada) == esperado


def test_create_link_and_duplicate_conflict(ctx, make_service, make_produto):
    sid = make_service()
    pid = make_produto()
    with transaction():
        v = criar_vinculo(sid, pid, quantidade="2.1", obrigatorio="true")
        assert v.quantidade == 3
        assert v.obrigatorio is True
        assert v.baixa_automatica is False

    with pytest.raises(Conflict) as exc:
        with transaction():
            criar_vinculo(sid, pid)
    assert "já existe" in exc.value.message
    assert ServicoProdutoVinculo.query.count() == 1


def test_create_link_requires_existing_ids(ctx, make_service, make_produto):
    sid = make_service()
    with pytest.raises(ValidationError) as exc:
        with transaction():
            criar_vinculo(sid, None)
    assert exc.value.message == "service_id e produto_id são obrigatórios"
    with pytest.raises(ValidationError) as exc:
        with transaction():
            criar_vinculo(sid, "abc")
    assert exc.value.message == "produto_id inválido"
    with pytest.raises(NotFound):
        with transaction():
            criar_vinculo(sid, 999)
    with pytest.raises(NotFound):
        with transaction():
            criar_vinculo(999, make_produto())


def test_partial_update_only_touches_sent_fields(ctx, make_service, make_produto, make_vinculo):
    vid = make_vinculo(make_service(), make_produto(), quantidade=2, obrigatorio=True)
    with transaction():
        atualizar_vinculo(vid, {"quantidade": "abc", "observacoes": "  Usar luvas  "})
    v = db.session.get(ServicoProdutoVinculo, vid)
    assert v.quantidade == 1
    assert v.observacoes == "Usar luvas"
    assert v.obrigatorio is True
    assert v.baixa_automatica is True


def test_update_errors(ctx, make_service, make_produto, make_vinculo):
    sid = make_service()
    p1, p2 = make_produto("A"), make_produto("B")
    make_vinculo(sid, p1)
    vid = make_vinculo(sid, p2)
    with pytest.raises(ValidationError):
        with transaction():
            atualizar_vinculo(None, {})
    with pytest.raises(NotFound):
        with transaction():
            atualizar_vinculo(555, {"quantidade": 2})
    with pytest.raises(Conflict):
        with transaction():
            atualizar_vinculo(vid, {"produto_id": p1})
    assert db.session.get(ServicoProdutoVinculo, vid).produto_id == p2


def test_delete_is_idempotent(ctx, make_service, make_produto, make_vinculo):
    vid = make_vinculo(make_service(), make_produto())
    with transaction():
        excluir_vinculo(vid)
    with transaction():
        excluir_vinculo(vid)
    assert ServicoProdutoVinculo.query.count() == 0


def test_list_newest_first(ctx, make_service, make_produto, make_vinculo):
    sid = make_service()
    primeiro = make_vinculo(sid, make_produto("A"))
    segundo = make_vinculo(sid, make_produto("B"))
    assert [v.id for v in listar_vinculos()] == [segundo, primeiro]


# ----------------------------
# HTTP
# ----------------------------
def test_link_endpoints(auth_client, make_service, make_produto):
    sid, pid = make_service(), make_produto()
    r = auth_client.post("/inventory/service-product-links",
                         json={"service_id": sid, "produto_id": pid, "quantidade": 1.2, "baixa_automatica": True})
    assert r.status_code == 201
    link = r.get_json()
    assert link["quantidade"] == 2
    assert link["baixa_automatica"] is True

    r = auth_client.post("/inventory/service-product-links", json={"service_id": sid, "produto_id": pid})
    assert r.status_code == 409

    r = auth_client.post("/inventory/service-product-links", json={"service_id": sid})
    assert r.status_code == 400
    assert r.get_json()["error"] == "service_id e produto_id são obrigatórios"

    r = auth_client.put("/inventory/service-product-links", json={"id": link["id"], "obrigatorio": True})
    assert r.get_json() == {"ok": True}

    r = auth_client.get("/inventory/service-product-links")
    body = r.get_json()
    assert len(body) == 1
    assert body[0]["obrigatorio"] is True
    assert body[0]["quantidade"] == 2

    r = auth_client.delete(f"/inventory/service-product-links?id={link['id']}")
    assert r.status_code == 200
    r = auth_client.delete(f"/inventory/service-product-links?id={link['id']}")
    assert r.status_code == 200
    assert auth_client.get("/inventory/service-product-links").get_json() == []


def test_link_endpoints_require_login(client):
    assert client.get("/inventory/service-product-links").status_code == 401


def test_link_invalid_id_names_the_right_field(auth_client, make_service):
    sid = make_service()
    r = auth_client.post("/inventory/service-product-links", json={"service_id": sid, "produto_id": "abc"})
    assert r.status_code == 400
    assert r.get_json()["error"] == "produto_id inválido"

    r = auth_client.post("/inventory/service-product-links", json={"service_id": "x1", "produto_id": 1})
    assert r.get_json()["error"] == "service_id inválido"


def test_link_form_keeps_lenient_values(auth_client, make_service, make_produto):
    sid, pid = make_service(), make_produto()
    r = auth_client.post("/inventory/service-product-links", json={
        "service_id": str(sid), "produto_id": pid, "quantidade": "abc", "obrigatorio": "sim",
    })
    assert r.status_code == 201
    link = r.get_json()
    assert link["quantidade"] == 1
    assert link["obrigatorio"] is True
    assert link["baixa_automatica"] is False

    r = auth_client.put("/inventory/service-product-links", json={"id": link["id"], "quantidade": 2.3,
                                                                  "observacoes": "x" * 501})
    assert r.status_code == 400
    assert "observacoes" in r.get_json()["details"]

    r = auth_client.put("/inventory/service-product-links", json={"id": link["id"], "quantidade": 2.3})
    assert r.status_code == 200
    body = auth_client.get("/inventory/service-product-links").get_json()[0]
    assert body["quantidade"] == 3
    assert body["obrigatorio"] is True
