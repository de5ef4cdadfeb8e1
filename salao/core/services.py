# salao/core/services.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, date, time, timedelta
from decimal import Decimal, InvalidOperation as _DecimalError, ROUND_CEILING
from typing import Iterable, List, Optional, Tuple, Dict, Any

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from salao.extensions import db
from salao.core.models import (
    _as_money, normalize_date,
    User, Service, Produto, Fornecedor, MovimentacaoEstoque, LoteProduto,
    ServicoProdutoVinculo, PedidoCompra, ContaPagar, AppSetting, AuditLog,
)

log = logging.getLogger("salao.estoque")

# =============================================================================
# Exceções e utilidades
# =============================================================================

class ServiceError(Exception):
    status_code = 400

    def __init__(self, message: str = "", details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

class ValidationError(ServiceError):
    status_code = 400

class InvalidOperation(ServiceError):
    status_code = 400

class Unauthorized(ServiceError):
    status_code = 401

class Forbidden(ServiceError):
    status_code = 403

class NotFound(ServiceError):
    status_code = 404

class Conflict(ServiceError):
    status_code = 409

class Internal(ServiceError):
    status_code = 500

def _ensure(cond, msg: str, exc: type = ValidationError):
    if not cond:
        raise exc(msg)

def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value

def _row_to_dict(obj, keys: Iterable[str]) -> Dict[str, Any]:
    return {k: _jsonable(getattr(obj, k, None)) for k in keys}

def _is_unique_violation(err: IntegrityError) -> bool:
    msg = str(getattr(err, "orig", err)).lower()
    return "unique" in msg or "duplicate" in msg

def _as_int(value, campo: str, minimo: Optional[int] = None) -> int:
    """Inteiro finito; rejeita bool, frações e texto não numérico."""
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError(f"{campo} inválido")
    try:
        d = Decimal(str(value).strip())
    except (_DecimalError, ValueError):
        raise ValidationError(f"{campo} inválido")
    if not d.is_finite() or d != d.to_integral_value():
        raise ValidationError(f"{campo} inválido")
    n = int(d)
    if minimo is not None and n < minimo:
        raise ValidationError(f"{campo} inválido")
    return n

def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t", "y", "yes", "sim", "on")
    return bool(value)

def _id_opcional(value, campo: str) -> Optional[int]:
    if value in (None, ""):
        return None
    return _as_int(value, campo, minimo=1)

@contextmanager
def transaction():
    try:
        yield
        db.session.commit()
    except IntegrityError as ie:
        db.session.rollback()
        if _is_unique_violation(ie):
            raise Conflict("Registro duplicado") from ie
        raise ValidationError(f"Violação de integridade: {ie.orig}") from ie
    except ServiceError:
        db.session.rollback()
        raise
    except Exception as e:
        db.session.rollback()
        logging.getLogger(__name__).exception("Falha inesperada na transação: %s", e)
        raise Internal("Erro interno do servidor") from e

def audit_log(entidade: str, entidade_id: Optional[int], acao: str, payload: dict, user: Optional[User]):
    entry = AuditLog(
        entidade=entidade,
        entidade_id=entidade_id,
        acao=acao,
        payload_json={k: _jsonable(v) for k, v in (payload or {}).items()},
        user_id=getattr(user, "id", None),
    )
    db.session.add(entry)

def require_role(user: Optional[User], allowed: Iterable[str]):
    if not user or not getattr(user, "ativo", False):
        raise Unauthorized("Usuário inválido ou inativo")
    if user.role not in allowed and "*" not in allowed:
        raise Forbidden("Permissão negada")

def _user_id(user: Optional[User]) -> Optional[int]:
    return getattr(user, "id", None)

# =============================================================================
# Razão de estoque
# =============================================================================

ORIGEM_CADASTRO = "Cadastro"
ORIGEM_ESGOTAR = "Esgotar"
ORIGEM_AJUSTE = "Ajuste de inventário"
ORIGEM_COMPRA = "compra"

def _get_produto(produto_id, for_update: bool = False) -> Produto:
    pid = _as_int(produto_id, "produto_id", minimo=1)
    q = db.session.query(Produto).filter(Produto.id == pid)
    if for_update:
        q = q.with_for_update()
    produto = q.first()
    _ensure(produto is not None, "Produto não encontrado", NotFound)
    return produto

def _gravar_quantidade(produto: Produto, delta: int = 0, absoluto: Optional[int] = None) -> Tuple[int, int]:
    """
    Compare-and-set de quantidade_atual: só grava se o valor lido ainda
    for o valor do banco; em conflito relê e tenta de novo.
    Retorna (quantidade_anterior, quantidade_nova).
    """
    tentativas = max(1, int(current_app.config.get("STOCK_UPDATE_RETRIES", 3)))
    for _ in range(tentativas):
        atual = int(produto.quantidade_atual or 0)
        novo = atual + delta if absoluto is None else absoluto
        if novo < 0:
            raise InvalidOperation("Operação resulta em estoque negativo")
        res = db.session.execute(
            update(Produto)
            .where(Produto.id == produto.id, Produto.quantidade_atual == atual)
            .values(quantidade_atual=novo, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            db.session.expire(produto, ["quantidade_atual", "updated_at"])
            return atual, novo
        log.warning("Conflito ao gravar estoque do produto %s; relendo", produto.id)
        db.session.refresh(produto)
    raise Conflict("Estoque alterado concorrentemente, tente novamente")

def _registrar_movimento(produto: Produto, tipo: str, quantidade: int, origem: Optional[str],
                         user: Optional[User], validade: Optional[date] = None) -> MovimentacaoEstoque:
    mov = MovimentacaoEstoque(
        produto_id=produto.id,
        tipo=tipo,
        quantidade=quantidade,
        origem=(origem or None) and str(origem).strip()[:200],
        data_hora=datetime.utcnow(),
        validade=validade,
        created_by_id=_user_id(user),
    )
    db.session.add(mov)
    db.session.flush()
    return mov

def aplicar_movimentacao(
    produto_id,
    tipo: str,
    quantidade,
    origem: Optional[str] = None,
    user: Optional[User] = None,
    valor_unitario=None,
    fornecedor_id=None,
    pedido_compra_id=None,
    data_vencimento=None,
) -> Tuple[MovimentacaoEstoque, int]:
    """
    Aplica uma entrada ou saída ao estoque do produto.

    A checagem de estoque negativo acontece antes de qualquer escrita; a
    movimentação e a nova quantidade são gravadas na mesma transação.
    Entradas com origem "compra" geram a conta a pagar correspondente.
    """
    _ensure(tipo in ("entrada", "saida"), "tipo deve ser 'entrada' ou 'saida'")
    qtd = _as_int(quantidade, "quantidade", minimo=1)
    produto = _get_produto(produto_id, for_update=True)

    delta = qtd if tipo == "entrada" else -qtd
    anterior, novo = _gravar_quantidade(produto, delta=delta)
    mov = _registrar_movimento(produto, tipo, qtd, origem, user)

    if tipo == "entrada" and isinstance(origem, str) and origem.strip().lower() == ORIGEM_COMPRA:
        _integrar_compra(produto, mov, qtd, valor_unitario, fornecedor_id, pedido_compra_id, data_vencimento)

    log.info("Movimentação %s: produto=%s tipo=%s qtd=%s %s->%s origem=%s",
             mov.id, produto.id, tipo, qtd, anterior, novo, origem)
    audit_log("Produto", produto.id, "movement",
              {"movimento_id": mov.id, "tipo": tipo, "quantidade": qtd, "de": anterior, "para": novo}, user)
    return mov, novo

def _integrar_compra(produto: Produto, mov: MovimentacaoEstoque, qtd: int, valor_unitario,
                     fornecedor_id, pedido_compra_id, data_vencimento) -> Optional[ContaPagar]:
    """Conta a pagar da entrada de compra; falha aqui não desfaz a movimentação."""
    try:
        with db.session.begin_nested():
            pedido = None
            pid = _id_opcional(pedido_compra_id, "pedido_compra_id")
            if pid:
                pedido = db.session.get(PedidoCompra, pid)

            valor = None
            unit = _as_money(valor_unitario) if valor_unitario not in (None, "") else Decimal("0")
            if unit > 0:
                valor = unit * qtd
            elif pedido is not None:
                valor = _as_money(produto.preco_custo) * pedido.quantidade
            elif produto.preco_custo:
                valor = _as_money(produto.preco_custo) * qtd

            vencimento = normalize_date(data_vencimento) or (
                date.today() + timedelta(days=int(current_app.config.get("PAYABLE_DEFAULT_DAYS", 30)))
            )
            conta = ContaPagar(
                descricao=f"Compra de {produto.nome or 'produto'} (mov {mov.id})",
                categoria="OUTROS",
                valor=_as_money(valor or 0),
                data_vencimento=vencimento,
                fornecedor_id=_id_opcional(fornecedor_id, "fornecedor_id") or (pedido.fornecedor_id if pedido else None),
                pedido_compra_id=pedido.id if pedido else None,
                status="PENDENTE",
            )
            db.session.add(conta)
            if pedido is not None:
                pedido.status = "recebido"
            db.session.flush()
        return conta
    except (SQLAlchemyError, ServiceError) as e:
        log.warning("Falha ao criar conta a pagar a partir da entrada de compra: %s", e)
        return None

def criar_produto(
    nome: str,
    categoria: Optional[str] = None,
    quantidade_minima=0,
    quantidade_atual=0,
    preco_custo=Decimal("0"),
    preco_venda=Decimal("0"),
    validade=None,
    fornecedor_principal_id=None,
    user: Optional[User] = None,
) -> Produto:
    nome = (nome or "").strip()
    _ensure(nome, "Nome obrigatório")
    custo = _as_money(preco_custo or 0)
    venda = _as_money(preco_venda or 0)
    _ensure(custo >= 0 and venda >= 0, "Preços não podem ser negativos")
    _ensure(venda >= custo, "Preço de venda menor que o custo")
    qtd_min = _as_int(quantidade_minima or 0, "quantidade_minima", minimo=0)
    qtd_ini = _as_int(quantidade_atual or 0, "quantidade_atual", minimo=0)
    # Formatos não reconhecidos são ignorados, não rejeitados
    validade = normalize_date(validade)
    fornecedor_id = _id_opcional(fornecedor_principal_id, "fornecedor_principal_id")
    if fornecedor_id:
        _ensure(db.session.get(Fornecedor, fornecedor_id) is not None, "Fornecedor não encontrado", NotFound)

    p = Produto(
        nome=nome,
        categoria=(categoria or "").strip() or None,
        quantidade_minima=qtd_min,
        quantidade_atual=qtd_ini,
        preco_custo=custo,
        preco_venda=venda,
        validade=validade,
        fornecedor_principal_id=fornecedor_id,
        created_by_id=_user_id(user),
    )
    db.session.add(p)
    db.session.flush()

    if qtd_ini > 0:
        agora = datetime.utcnow()
        _registrar_movimento(p, "entrada", qtd_ini, ORIGEM_CADASTRO, user, validade=validade)
        if validade:
            lote = LoteProduto(
                produto_id=p.id,
                lote=f"L{int(agora.timestamp() * 1000)}",
                validade=validade,
                quantidade=qtd_ini,
            )
            db.session.add(lote)

    log.info("Produto %s cadastrado com %s unidades", p.id, qtd_ini)
    audit_log("Produto", p.id, "created", _row_to_dict(p, ["nome", "quantidade_atual", "preco_custo", "preco_venda"]), user)
    return p

def esgotar_produto(produto_id, user: Optional[User] = None) -> Dict[str, Any]:
    produto = _get_produto(produto_id, for_update=True)
    if int(produto.quantidade_atual or 0) <= 0:
        return {"ok": True, "message": "Produto já está com estoque zerado"}
    anterior, _ = _gravar_quantidade(produto, absoluto=0)
    mov = _registrar_movimento(produto, "saida", anterior, ORIGEM_ESGOTAR, user)
    log.info("Produto %s esgotado (%s unidades)", produto.id, anterior)
    audit_log("Produto", produto.id, "movement", {"movimento_id": mov.id, "tipo": "saida", "quantidade": anterior, "de": anterior, "para": 0}, user)
    return {"ok": True}

def ajustar_estoque(produto_id, quantidade_contada, motivo: Optional[str] = None,
                    user: Optional[User] = None) -> Optional[MovimentacaoEstoque]:
    """Ajusta o estoque para a contagem física; sem diferença, nada é gravado."""
    contada = _as_int(quantidade_contada, "quantidade", minimo=0)
    produto = _get_produto(produto_id, for_update=True)
    if int(produto.quantidade_atual or 0) == contada:
        return None
    anterior, novo = _gravar_quantidade(produto, absoluto=contada)
    mov = _registrar_movimento(produto, "ajuste", contada, (motivo or "").strip() or ORIGEM_AJUSTE, user)
    audit_log("Produto", produto.id, "adjust", {"movimento_id": mov.id, "de": anterior, "para": novo}, user)
    return mov

def saldo_por_movimentos(produto_id) -> int:
    """Reaplica o razão desde zero: entrada soma, saida subtrai, ajuste fixa o saldo."""
    pid = _as_int(produto_id, "produto_id", minimo=1)
    saldo = 0
    movs = (
        db.session.query(MovimentacaoEstoque)
        .filter(MovimentacaoEstoque.produto_id == pid)
        .order_by(MovimentacaoEstoque.data_hora.asc(), MovimentacaoEstoque.id.asc())
    )
    for m in movs:
        if m.tipo == "entrada":
            saldo += m.quantidade
        elif m.tipo == "saida":
            saldo -= m.quantidade
        else:
            saldo = m.quantidade
    return saldo

def conciliar_produto(produto_id) -> Dict[str, Any]:
    produto = _get_produto(produto_id)
    saldo = saldo_por_movimentos(produto.id)
    atual = int(produto.quantidade_atual or 0)
    if saldo != atual:
        log.error("Razão divergente para produto %s: atual=%s movimentos=%s", produto.id, atual, saldo)
    return {
        "produto_id": produto.id,
        "quantidade_atual": atual,
        "saldo_movimentos": saldo,
        "consistente": saldo == atual,
    }

def listar_produtos(abaixo_minimo: bool = False) -> List[Produto]:
    q = Produto.query.filter(Produto.ativo.is_(True))
    if abaixo_minimo:
        q = q.filter(Produto.quantidade_atual < Produto.quantidade_minima)
    return q.order_by(Produto.nome.asc()).all()

def listar_movimentacoes(produto_id, limit: int = 200) -> List[MovimentacaoEstoque]:
    produto = _get_produto(produto_id)
    return (
        MovimentacaoEstoque.query.filter_by(produto_id=produto.id)
        .order_by(MovimentacaoEstoque.data_hora.desc(), MovimentacaoEstoque.id.desc())
        .limit(limit)
        .all()
    )

def produto_to_dict(p: Produto) -> Dict[str, Any]:
    d = _row_to_dict(p, [
        "id", "nome", "categoria", "quantidade_atual", "quantidade_minima",
        "preco_custo", "preco_venda", "validade", "fornecedor_principal_id",
    ])
    d["abaixo_minimo"] = p.abaixo_minimo
    return d

def movimentacao_to_dict(m: MovimentacaoEstoque) -> Dict[str, Any]:
    return _row_to_dict(m, ["id", "produto_id", "tipo", "quantidade", "origem", "data_hora", "validade"])

# =============================================================================
# Fornecedores e pedidos de compra
# =============================================================================

def criar_fornecedor(nome_fantasia: str, cnpj: Optional[str] = None, contato: Optional[str] = None,
                     telefone: Optional[str] = None, email: Optional[str] = None) -> Fornecedor:
    nome = (nome_fantasia or "").strip()
    _ensure(nome, "Nome do fornecedor obrigatório")
    _ensure(Fornecedor.query.filter_by(nome_fantasia=nome).first() is None, "Fornecedor já cadastrado", Conflict)
    f = Fornecedor(
        nome_fantasia=nome,
        cnpj=(cnpj or "").strip() or None,
        contato=(contato or "").strip() or None,
        telefone=(telefone or "").strip() or None,
        email=(email or "").strip().lower() or None,
    )
    db.session.add(f)
    db.session.flush()
    return f

def listar_fornecedores() -> List[Fornecedor]:
    return Fornecedor.query.filter_by(ativo=True).order_by(Fornecedor.nome_fantasia.asc()).all()

def criar_pedido_compra(produto_id, quantidade, fornecedor_id=None, user: Optional[User] = None) -> PedidoCompra:
    produto = _get_produto(produto_id)
    qtd = _as_int(quantidade, "quantidade", minimo=1)
    fid = _id_opcional(fornecedor_id, "fornecedor_id") or produto.fornecedor_principal_id
    if fid:
        _ensure(db.session.get(Fornecedor, fid) is not None, "Fornecedor não encontrado", NotFound)
    pedido = PedidoCompra(produto_id=produto.id, fornecedor_id=fid, quantidade=qtd,
                          status="pendente", created_by_id=_user_id(user))
    db.session.add(pedido)
    db.session.flush()
    audit_log("PedidoCompra", pedido.id, "created", {"produto_id": produto.id, "quantidade": qtd}, user)
    return pedido

def receber_pedido_compra(pedido_compra_id, valor_unitario=None, data_vencimento=None,
                          fornecedor_id=None, user: Optional[User] = None) -> Tuple[MovimentacaoEstoque, int]:
    _ensure(pedido_compra_id not in (None, ""), "pedido_compra_id é obrigatório")
    pedido = db.session.get(PedidoCompra, _as_int(pedido_compra_id, "pedido_compra_id", minimo=1))
    _ensure(pedido is not None, "Pedido de compra não encontrado", NotFound)
    _ensure(pedido.status != "recebido", "Pedido já marcado como recebido", Conflict)
    _ensure(pedido.status == "pendente" and pedido.quantidade > 0, "Pedido inválido para recebimento")

    mov, novo = aplicar_movimentacao(
        pedido.produto_id, "entrada", pedido.quantidade, ORIGEM_COMPRA, user,
        valor_unitario=valor_unitario,
        fornecedor_id=fornecedor_id or pedido.fornecedor_id,
        pedido_compra_id=pedido.id,
        data_vencimento=data_vencimento,
    )
    # Garante o status mesmo se a integração financeira falhou
    pedido.status = "recebido"
    audit_log("PedidoCompra", pedido.id, "received", {"movimento_id": mov.id}, user)
    return mov, novo

# =============================================================================
# Vínculos serviço × produto
# =============================================================================

def _quantidade_vinculo(value) -> int:
    """Número positivo e finito, arredondado para cima; qualquer outro valor vira 1."""
    if isinstance(value, bool):
        return 1
    try:
        n = Decimal(str(value).strip())
    except (_DecimalError, ValueError):
        return 1
    if not n.is_finite() or n <= 0:
        return 1
    return int(n.to_integral_value(rounding=ROUND_CEILING))

def _id_obrigatorio(value, campo: str, msg: str) -> int:
    if value is None or str(value).strip() == "":
        raise ValidationError(msg)
    return _as_int(value, campo, minimo=1)

def criar_vinculo(service_id, produto_id, quantidade=1, obrigatorio=False, baixa_automatica=False,
                  observacoes: Optional[str] = None, user: Optional[User] = None) -> ServicoProdutoVinculo:
    msg = "service_id e produto_id são obrigatórios"
    sid = _id_obrigatorio(service_id, "service_id", msg)
    pid = _id_obrigatorio(produto_id, "produto_id", msg)
    _ensure(db.session.get(Service, sid) is not None, "Serviço não encontrado", NotFound)
    _ensure(db.session.get(Produto, pid) is not None, "Produto não encontrado", NotFound)

    duplicado = "Vínculo já existe para este serviço e produto"
    _ensure(ServicoProdutoVinculo.query.filter_by(service_id=sid, produto_id=pid).first() is None, duplicado, Conflict)

    v = ServicoProdutoVinculo(
        service_id=sid,
        produto_id=pid,
        quantidade=_quantidade_vinculo(quantidade),
        obrigatorio=_as_bool(obrigatorio),
        baixa_automatica=_as_bool(baixa_automatica),
        observacoes=(str(observacoes).strip() or None) if observacoes else None,
    )
    db.session.add(v)
    try:
        db.session.flush()
    except IntegrityError as ie:
        if _is_unique_violation(ie):
            raise Conflict(duplicado) from ie
        raise
    audit_log("ServicoProdutoVinculo", v.id, "created", {"service_id": sid, "produto_id": pid}, user)
    return v

def atualizar_vinculo(vinculo_id, dados: Dict[str, Any], user: Optional[User] = None) -> ServicoProdutoVinculo:
    vid = _id_obrigatorio(vinculo_id, "id", "id obrigatório")
    v = db.session.get(ServicoProdutoVinculo, vid)
    _ensure(v is not None, "Vínculo não encontrado", NotFound)

    if dados.get("service_id"):
        sid = _as_int(dados["service_id"], "service_id", minimo=1)
        _ensure(db.session.get(Service, sid) is not None, "Serviço não encontrado", NotFound)
        v.service_id = sid
    if dados.get("produto_id"):
        pid = _as_int(dados["produto_id"], "produto_id", minimo=1)
        _ensure(db.session.get(Produto, pid) is not None, "Produto não encontrado", NotFound)
        v.produto_id = pid
    if "observacoes" in dados:
        v.observacoes = str(dados["observacoes"]).strip() or None if dados["observacoes"] else None
    if "quantidade" in dados:
        v.quantidade = _quantidade_vinculo(dados["quantidade"])
    if "obrigatorio" in dados:
        v.obrigatorio = _as_bool(dados["obrigatorio"])
    if "baixa_automatica" in dados:
        v.baixa_automatica = _as_bool(dados["baixa_automatica"])

    try:
        db.session.flush()
    except IntegrityError as ie:
        if _is_unique_violation(ie):
            raise Conflict("Vínculo já existe para este serviço e produto") from ie
        raise
    audit_log("ServicoProdutoVinculo", v.id, "updated", {k: dados[k] for k in dados if k != "id"}, user)
    return v

def excluir_vinculo(vinculo_id, user: Optional[User] = None) -> None:
    vid = _id_obrigatorio(vinculo_id, "id", "id obrigatório")
    removidos = ServicoProdutoVinculo.query.filter_by(id=vid).delete(synchronize_session=False)
    if removidos:
        audit_log("ServicoProdutoVinculo", vid, "deleted", {}, user)

def listar_vinculos() -> List[ServicoProdutoVinculo]:
    return (
        ServicoProdutoVinculo.query
        .order_by(ServicoProdutoVinculo.created_at.desc(), ServicoProdutoVinculo.id.desc())
        .all()
    )

def vinculo_to_dict(v: ServicoProdutoVinculo) -> Dict[str, Any]:
    return _row_to_dict(v, [
        "id", "service_id", "produto_id", "quantidade", "obrigatorio",
        "baixa_automatica", "observacoes", "created_at", "updated_at",
    ])

# =============================================================================
# Configurações
# =============================================================================

SETTING_KEYS = ("max_capacity",)

def get_setting_int(key: str, fallback: Optional[int] = None) -> Optional[int]:
    _ensure(key in SETTING_KEYS, "Configuração desconhecida", NotFound)
    row = db.session.get(AppSetting, key)
    if row is None or row.value_int is None:
        return fallback
    return row.value_int

def set_setting_int(key: str, value, user: Optional[User] = None) -> int:
    _ensure(key in SETTING_KEYS, "Configuração desconhecida", NotFound)
    v = _as_int(value, "value", minimo=0)
    row = db.session.get(AppSetting, key)
    if row is None:
        row = AppSetting(key=key)
        db.session.add(row)
    row.value_int = v
    audit_log("AppSetting", None, "updated", {"key": key, "value": v}, user)
    return v
