from datetime import date

import pytest
from sqlalchemy import update

from salao.extensions import db
from salao.core.models import Produto, MovimentacaoEstoque, LoteProduto, ContaPagar, PedidoCompra
from salao.core.services import (
    transaction, aplicar_movimentacao, criar_produto, esgotar_produto, ajustar_estoque,
    saldo_por_movimentos, conciliar_produto, criar_pedido_compra, receber_pedido_compra,
    _gravar_quantidade, ValidationError, InvalidOperation, NotFound, Conflict,
)


def _movs(pid):
    return MovimentacaoEstoque.query.filter_by(produto_id=pid).count()


def test_ledger_replay_matches_quantity_after_mixed_operations(ctx, make_produto):
    pid = make_produto(quantidade=10)
    with transaction():
        aplicar_movimentacao(pid, "saida", 3, "Uso")
        aplicar_movimentacao(pid, "entrada", 7, "Reposição")
    with transaction():
        ajustar_estoque(pid, 12, "Contagem mensal")
    with transaction():
        aplicar_movimentacao(pid, "saida", 2)

    p = db.session.get(Produto, pid)
    assert p.quantidade_atual == 10
    assert saldo_por_movimentos(pid) == 10
    assert conciliar_produto(pid)["consistente"] is True


def test_saida_beyond_stock_is_rejected_without_writes(ctx, make_produto):
    pid = make_produto(quantidade=2)
    antes = _movs(pid)
    with pytest.raises(InvalidOperation):
        with transaction():
            aplicar_movimentacao(pid, "saida", 3)
    assert db.session.get(Produto, pid).quantidade_atual == 2
    assert _movs(pid) == antes


@pytest.mark.parametrize("quantidade", [0, -1, "2.5", "abc", True, None])
def test_movement_quantity_must_be_positive_integer(ctx, make_produto, quantidade):
    pid = make_produto(quantidade=5)
    with pytest.raises(ValidationError):
        with transaction():
            aplicar_movimentacao(pid, "entrada", quantidade)


def test_movement_rejects_unknown_type_and_missing_product(ctx, make_produto):
    pid = make_produto(quantidade=5)
    with pytest.raises(ValidationError):
        with transaction():
            aplicar_movimentacao(pid, "ajuste", 1)
    with pytest.raises(NotFound):
        with transaction():
            aplicar_movimentacao(9999, "entrada", 1)


def test_register_product_with_expiry_creates_movement_and_lot(ctx):
    with transaction():
        p = criar_produto("Máscara", quantidade_atual=5, preco_custo="8", preco_venda="15", validade="2025-12-31")
        pid = p.id
    p = db.session.get(Produto, pid)
    assert p.quantidade_atual == 5
    movs = MovimentacaoEstoque.query.filter_by(produto_id=pid).all()
    assert [(m.tipo, m.quantidade, m.origem) for m in movs] == [("entrada", 5, "Cadastro")]
    lotes = LoteProduto.query.filter_by(produto_id=pid).all()
    assert len(lotes) == 1
    assert lotes[0].quantidade == 5
    assert lotes[0].validade == date(2025, 12, 31)
    assert lotes[0].lote.startswith("L")


def test_register_product_accepts_us_date_and_ignores_unknown_format(ctx):
    with transaction():
        a = criar_produto("A", quantidade_atual=1, validade="12/31/2025")
        b = criar_produto("B", quantidade_atual=1, validade="31.12.2025")
        ids = a.id, b.id
    assert db.session.get(Produto, ids[0]).validade == date(2025, 12, 31)
    assert db.session.get(Produto, ids[1]).validade is None
    assert LoteProduto.query.filter_by(produto_id=ids[1]).count() == 0


def test_register_product_without_stock_records_no_movement(ctx):
    with transaction():
        pid = criar_produto("Gel", validade="2025-12-31").id
    assert _movs(pid) == 0
    assert LoteProduto.query.count() == 0


def test_register_product_sale_below_cost_creates_nothing(ctx):
    with pytest.raises(ValidationError):
        with transaction():
            criar_produto("Caro", quantidade_atual=3, preco_custo="20", preco_venda="10")
    assert Produto.query.count() == 0
    assert MovimentacaoEstoque.query.count() == 0


def test_register_product_requires_name(ctx):
    with pytest.raises(ValidationError):
        with transaction():
            criar_produto("   ")


def test_deplete_zero_stock_is_noop(ctx, make_produto):
    pid = make_produto(quantidade=0)
    with transaction():
        out = esgotar_produto(pid)
    assert out["ok"] is True
    assert "message" in out
    assert _movs(pid) == 0


def test_deplete_records_full_saida(ctx, make_produto):
    pid = make_produto(quantidade=4)
    with transaction():
        esgotar_produto(pid)
    ultima = MovimentacaoEstoque.query.filter_by(produto_id=pid).order_by(MovimentacaoEstoque.id.desc()).first()
    assert (ultima.tipo, ultima.quantidade, ultima.origem) == ("saida", 4, "Esgotar")
    assert db.session.get(Produto, pid).quantidade_atual == 0
    assert conciliar_produto(pid)["consistente"]


def test_deplete_missing_product(ctx):
    with pytest.raises(NotFound):
        with transaction():
            esgotar_produto(12345)


def test_adjust_to_zero_and_noop_when_equal(ctx, make_produto):
    pid = make_produto(quantidade=6)
    with transaction():
        assert ajustar_estoque(pid, 6) is None
    with transaction():
        mov = ajustar_estoque(pid, 0, None)
        assert mov.tipo == "ajuste" and mov.quantidade == 0
    assert db.session.get(Produto, pid).quantidade_atual == 0
    assert saldo_por_movimentos(pid) == 0


def test_compare_and_set_retries_on_stale_read(ctx, make_produto):
    pid = make_produto(quantidade=5)
    p = db.session.get(Produto, pid)
    assert p.quantidade_atual == 5
    # Outra escrita muda o banco sem atualizar o objeto carregado
    db.session.execute(
        update(Produto).where(Produto.id == pid).values(quantidade_atual=9)
        .execution_options(synchronize_session=False)
    )
    anterior, novo = _gravar_quantidade(p, delta=-1)
    assert (anterior, novo) == (9, 8)
    db.session.rollback()


def test_compare_and_set_gives_up_after_retries(ctx, make_produto, monkeypatch):
    pid = make_produto(quantidade=5)
    p = db.session.get(Produto, pid)
    ctx.config["STOCK_UPDATE_RETRIES"] = 2
    monkeypatch.setattr(db.session, "refresh", lambda obj: None)
    db.session.execute(
        update(Produto).where(Produto.id == pid).values(quantidade_atual=9)
        .execution_options(synchronize_session=False)
    )
    with pytest.raises(Conflict):
        _gravar_quantidade(p, delta=1)
    db.session.rollback()


def test_purchase_entry_creates_payable(ctx, make_produto):
    pid = make_produto(quantidade=0, custo="4.00", venda="9.00")
    with transaction():
        mov, novo = aplicar_movimentacao(pid, "entrada", 10, "Compra", valor_unitario="3.50",
                                         data_vencimento="2025-03-10")
    assert novo == 10
    conta = ContaPagar.query.one()
    assert str(conta.valor) == "35.00"
    assert conta.data_vencimento == date(2025, 3, 10)
    assert conta.status == "PENDENTE"


def test_purchase_entry_without_unit_uses_cost(ctx, make_produto):
    pid = make_produto(quantidade=0, custo="4.00", venda="9.00")
    with transaction():
        aplicar_movimentacao(pid, "entrada", 5, "compra")
    conta = ContaPagar.query.one()
    assert str(conta.valor) == "20.00"
    assert (conta.data_vencimento - date.today()).days == 30


def test_receive_purchase_order_once(ctx, make_produto):
    pid = make_produto(quantidade=1, custo="2.00", venda="5.00")
    with transaction():
        pedido_id = criar_pedido_compra(pid, 8).id
    with transaction():
        mov, novo = receber_pedido_compra(pedido_id)
    assert novo == 9
    assert db.session.get(PedidoCompra, pedido_id).status == "recebido"
    conta = ContaPagar.query.one()
    assert conta.pedido_compra_id == pedido_id
    assert str(conta.valor) == "16.00"

    with pytest.raises(Conflict):
        with transaction():
            receber_pedido_compra(pedido_id)
    assert db.session.get(Produto, pid).quantidade_atual == 9


def test_receive_missing_purchase_order(ctx):
    with pytest.raises(NotFound):
        with transaction():
            receber_pedido_compra(77)


# ----------------------------
# HTTP
# ----------------------------
def test_movement_endpoint_accepts_aliases(auth_client, make_produto):
    pid = make_produto(quantidade=3)
    r = auth_client.post("/inventory/movements", json={"productId": pid, "type": "saida", "quantity": 2, "origin": "Uso"})
    assert r.status_code == 201
    body = r.get_json()
    assert body["quantidade_atual"] == 1
    assert body["id"]


def test_movement_endpoint_errors(auth_client, make_produto):
    pid = make_produto(quantidade=1)
    r = auth_client.post("/inventory/movements", json={"produto_id": pid, "tipo": "saida", "quantidade": 5})
    assert r.status_code == 400
    assert "negativo" in r.get_json()["error"]

    r = auth_client.post("/inventory/movements", json={"produto_id": 999, "tipo": "entrada", "quantidade": 1})
    assert r.status_code == 404

    r = auth_client.post("/inventory/movements", json={"produto_id": pid, "tipo": "entrada", "quantidade": 1.5})
    assert r.status_code == 400
    assert "quantidade" in r.get_json()["details"]


def test_movement_endpoint_requires_login(client, make_produto):
    pid = make_produto(quantidade=1)
    r = client.post("/inventory/movements", json={"produto_id": pid, "tipo": "entrada", "quantidade": 1})
    assert r.status_code == 401


def test_product_endpoints(auth_client, app):
    r = auth_client.post("/inventory/products", json={
        "nome": "Condicionador", "quantidade_atual": 2, "quantidade_minima": 5,
        "preco_custo": 10, "preco_venda": 18.5, "validade": "2026-01-15",
    })
    assert r.status_code == 200
    pid = r.get_json()["id"]
    assert r.get_json()["nome"] == "Condicionador"

    r = auth_client.post("/inventory/products", json={"nome": "X", "preco_custo": 10, "preco_venda": 5})
    assert r.status_code == 400

    r = auth_client.get("/inventory/products?abaixo_minimo=1")
    assert [p["id"] for p in r.get_json()] == [pid]

    r = auth_client.post(f"/inventory/products/{pid}/adjust", json={"quantidade": 7, "motivo": "Inventário"})
    assert r.status_code == 200

    r = auth_client.get(f"/inventory/products/{pid}/movements")
    assert [m["tipo"] for m in r.get_json()] == ["ajuste", "entrada"]

    r = auth_client.get(f"/inventory/products/{pid}/reconcile")
    assert r.get_json() == {"produto_id": pid, "quantidade_atual": 7, "saldo_movimentos": 7, "consistente": True}

    r = auth_client.post("/inventory/products/deplete", json={"id": pid})
    assert r.get_json() == {"ok": True}
    r = auth_client.post("/inventory/products/deplete", json={"id": 4242})
    assert r.status_code == 404
    r = auth_client.post("/inventory/products/deplete", json={})
    assert r.status_code == 400


def test_purchase_order_endpoints(auth_client, make_produto):
    pid = make_produto(quantidade=0, custo="1.00", venda="2.00")
    r = auth_client.post("/inventory/suppliers", json={"nome_fantasia": "Distribuidora Sol"})
    assert r.status_code == 201
    fid = r.get_json()["id"]
    r = auth_client.post("/inventory/purchase-orders", json={"produto_id": pid, "quantidade": 4, "fornecedor_id": fid})
    assert r.status_code == 201
    pedido = r.get_json()["id"]

    r = auth_client.post("/inventory/purchase-orders/receive", json={"pedido_compra_id": pedido, "valor_unitario": 1.25})
    assert r.status_code == 201
    assert r.get_json()["quantidade_atual"] == 4
    r = auth_client.post("/inventory/purchase-orders/receive", json={"pedido_compra_id": pedido})
    assert r.status_code == 409
    r = auth_client.post("/inventory/purchase-orders/receive", json={"pedido_compra_id": 999})
    assert r.status_code == 404

    r = auth_client.get("/finance/payables")
    contas = r.get_json()
    assert len(contas) == 1
    assert contas[0]["valor"] == "5.00"
    assert contas[0]["fornecedor"]["id"] == fid
