# salao/views/estoque.py
from __future__ import annotations

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from salao.core.forms import (
    validar_json, dados_enviados, MovimentacaoForm, ProdutoForm, AjusteEstoqueForm,
    FornecedorForm, PedidoCompraForm, RecebimentoPedidoForm, VinculoForm,
)
from salao.core.services import (
    transaction, _row_to_dict, ValidationError,
    aplicar_movimentacao, criar_produto, esgotar_produto, ajustar_estoque, conciliar_produto,
    listar_produtos, listar_movimentacoes, produto_to_dict, movimentacao_to_dict,
    criar_fornecedor, listar_fornecedores, criar_pedido_compra, receber_pedido_compra,
    criar_vinculo, atualizar_vinculo, excluir_vinculo, listar_vinculos, vinculo_to_dict,
)

bp = Blueprint("estoque", __name__)

# Nomes alternativos aceitos no corpo da movimentação
ALIASES_MOVIMENTO = {"productId": "produto_id", "type": "tipo", "quantity": "quantidade", "origin": "origem"}


# ----------------------------
# Helpers
# ----------------------------
def _json() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON inválido")
    return data

def _com_aliases(data: dict, aliases: dict) -> dict:
    out = dict(data)
    for de, para in aliases.items():
        if de in out and para not in out:
            out[para] = out.pop(de)
    return out


# ----------------------------
# Movimentações
# ----------------------------
@bp.post("/movements")
@login_required
def nova_movimentacao():
    form = validar_json(MovimentacaoForm, _com_aliases(_json(), ALIASES_MOVIMENTO))
    with transaction():
        mov, novo = aplicar_movimentacao(
            form.produto_id.data,
            form.tipo.data,
            form.quantidade.data,
            form.origem.data or None,
            current_user,
            valor_unitario=form.valor_unitario.data,
            fornecedor_id=form.fornecedor_id.data,
            pedido_compra_id=form.pedido_compra_id.data,
            data_vencimento=form.data_vencimento.data,
        )
        mov_id = mov.id
    return jsonify(id=mov_id, quantidade_atual=novo), 201


# ----------------------------
# Produtos
# ----------------------------
@bp.get("/products")
@login_required
def produtos():
    abaixo = request.args.get("abaixo_minimo") in ("1", "true")
    return jsonify([produto_to_dict(p) for p in listar_produtos(abaixo_minimo=abaixo)])

@bp.post("/products")
@login_required
def novo_produto():
    form = validar_json(ProdutoForm, _json())
    with transaction():
        p = criar_produto(
            nome=form.nome.data,
            categoria=form.categoria.data,
            quantidade_minima=form.quantidade_minima.data or 0,
            quantidade_atual=form.quantidade_atual.data or 0,
            preco_custo=form.preco_custo.data,
            preco_venda=form.preco_venda.data,
            validade=form.validade.data,
            fornecedor_principal_id=form.fornecedor_principal_id.data,
            user=current_user,
        )
        out = {"id": p.id, "nome": p.nome}
    return jsonify(out)

@bp.post("/products/deplete")
@login_required
def esgotar():
    data = _json()
    if data.get("id") in (None, ""):
        raise ValidationError("ID do produto é obrigatório")
    with transaction():
        out = esgotar_produto(data["id"], current_user)
    return jsonify(out)

@bp.get("/products/<int:produto_id>/movements")
@login_required
def movimentacoes_produto(produto_id: int):
    limit = min(request.args.get("limit", 200, type=int) or 200, 1000)
    return jsonify([movimentacao_to_dict(m) for m in listar_movimentacoes(produto_id, limit=limit)])

@bp.post("/products/<int:produto_id>/adjust")
@login_required
def ajustar(produto_id: int):
    form = validar_json(AjusteEstoqueForm, _json())
    with transaction():
        mov = ajustar_estoque(produto_id, form.quantidade.data, form.motivo.data, current_user)
        out = {"ok": True, "movimento_id": mov.id if mov else None, "quantidade_atual": form.quantidade.data}
    return jsonify(out)

@bp.get("/products/<int:produto_id>/reconcile")
@login_required
def conciliar(produto_id: int):
    return jsonify(conciliar_produto(produto_id))


# ----------------------------
# Vínculos serviço × produto
# ----------------------------
@bp.get("/service-product-links")
@login_required
def vinculos():
    return jsonify([vinculo_to_dict(v) for v in listar_vinculos()])

@bp.post("/service-product-links")
@login_required
def novo_vinculo():
    form = validar_json(VinculoForm, _json())
    with transaction():
        v = criar_vinculo(
            form.service_id.data,
            form.produto_id.data,
            quantidade=form.quantidade.data or 1,
            obrigatorio=form.obrigatorio.data or False,
            baixa_automatica=form.baixa_automatica.data or False,
            observacoes=form.observacoes.data,
            user=current_user,
        )
        out = vinculo_to_dict(v)
    return jsonify(out), 201

@bp.put("/service-product-links")
@login_required
def editar_vinculo():
    data = _json()
    form = validar_json(VinculoForm, data)
    with transaction():
        atualizar_vinculo(form.id.data, dados_enviados(form, data), current_user)
    return jsonify(ok=True)

@bp.delete("/service-product-links")
@login_required
def remover_vinculo():
    vid = request.args.get("id") or _json().get("id")
    with transaction():
        excluir_vinculo(vid, current_user)
    return jsonify(ok=True)


# ----------------------------
# Fornecedores e pedidos
# ----------------------------
@bp.get("/suppliers")
@login_required
def fornecedores():
    campos = ["id", "nome_fantasia", "cnpj", "contato", "telefone", "email"]
    return jsonify([_row_to_dict(f, campos) for f in listar_fornecedores()])

@bp.post("/suppliers")
@login_required
def novo_fornecedor():
    form = validar_json(FornecedorForm, _json())
    with transaction():
        f = criar_fornecedor(form.nome_fantasia.data, form.cnpj.data, form.contato.data,
                             form.telefone.data, form.email.data)
        out = {"id": f.id, "nome_fantasia": f.nome_fantasia}
    return jsonify(out), 201

@bp.post("/purchase-orders")
@login_required
def novo_pedido():
    form = validar_json(PedidoCompraForm, _json())
    with transaction():
        pedido = criar_pedido_compra(form.produto_id.data, form.quantidade.data, form.fornecedor_id.data, current_user)
        out = _row_to_dict(pedido, ["id", "produto_id", "fornecedor_id", "quantidade", "status"])
    return jsonify(out), 201

@bp.post("/purchase-orders/receive")
@login_required
def receber_pedido():
    form = validar_json(RecebimentoPedidoForm, _json())
    with transaction():
        mov, novo = receber_pedido_compra(
            form.pedido_compra_id.data,
            valor_unitario=form.valor_unitario.data,
            data_vencimento=form.data_vencimento.data,
            fornecedor_id=form.fornecedor_id.data,
            user=current_user,
        )
        mov_id = mov.id
    return jsonify(id=mov_id, quantidade_atual=novo), 201
