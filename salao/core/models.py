# salao/core/models.py
from __future__ import annotations

import os
import re
import secrets
from datetime import datetime, date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import (
    CheckConstraint, Column, Integer, BigInteger, String, Text, Date, Time, DateTime,
    Boolean, ForeignKey, UniqueConstraint, Numeric, Enum, JSON, Index, func
)
from sqlalchemy.orm import relationship, backref, validates
from werkzeug.security import generate_password_hash as _wzh, check_password_hash as _wzc

from salao.extensions import db  # type: ignore


# =============================================================================
# Utilidades e Mixins
# =============================================================================

MONEY = Numeric(12, 2)   # 999.999.999,99 máx
PERCENT = Numeric(5, 2)
# BIGINT não vira alias de ROWID no SQLite
BIGID = BigInteger().with_variant(Integer, "sqlite")

def _as_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_US_DATE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")

def normalize_date(value) -> Optional[date]:
    """
    Aceita YYYY-MM-DD ou MM/DD/YYYY.
    Qualquer outro formato (ou data impossível) é tratado como ausente.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    m = _ISO_DATE.match(s)
    if m:
        y, mo, d = m.groups()
    else:
        m = _US_DATE.match(s)
        if not m:
            return None
        mo, d, y = m.groups()
    try:
        return date(int(y), int(mo), int(d))
    except ValueError:
        return None

class TimestampMixin:
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

class AuditMixin:
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)


# =============================================================================
# Enums
# =============================================================================

ROLES = ("ADMIN", "PROFESSIONAL", "CLIENT")
APPOINTMENT_STATUS = ("PENDING", "CONFIRMED", "COMPLETED", "CANCELLED")
PAYMENT_STATUS = ("PENDING", "PAID", "OVERDUE")
MOVIMENTO_TIPOS = ("entrada", "saida", "ajuste")
ORCAMENTO_STATUS = ("RASCUNHO", "ENVIADO", "APROVADO", "REJEITADO", "EXPIRADO")
PEDIDO_COMPRA_STATUS = ("pendente", "recebido", "cancelado")
CONTA_PAGAR_STATUS = ("PENDENTE", "PAGO", "ATRASADO", "CANCELADO")
COMISSAO_STATUS = ("CALCULADO", "APROVADO", "PAGO")
EVENT_IMPORTANCE = ("ROUTINE", "IMPORTANT", "VERY_IMPORTANT", "CRITICAL")
SERVICE_QUALITY = ("POOR", "FAIR", "GOOD", "VERY_GOOD", "EXCELLENT")
CLIENT_MOOD = ("VERY_HAPPY", "HAPPY", "NEUTRAL", "TIRED", "STRESSED", "UPSET")
COFFEE_STRENGTH = ("WEAK", "MEDIUM", "STRONG", "VERY_STRONG")

RoleEnum = Enum(*ROLES, name="role_enum")
AppointmentStatusEnum = Enum(*APPOINTMENT_STATUS, name="appointment_status_enum")
PaymentStatusEnum = Enum(*PAYMENT_STATUS, name="payment_status_enum")
MovimentoEnum = Enum(*MOVIMENTO_TIPOS, name="movimento_enum")
OrcamentoStatusEnum = Enum(*ORCAMENTO_STATUS, name="orcamento_status_enum")
PedidoCompraStatusEnum = Enum(*PEDIDO_COMPRA_STATUS, name="pedido_compra_status_enum")
ContaPagarStatusEnum = Enum(*CONTA_PAGAR_STATUS, name="conta_pagar_status_enum")
ComissaoStatusEnum = Enum(*COMISSAO_STATUS, name="comissao_status_enum")


# =============================================================================
# Pessoas e catálogo
# =============================================================================

class User(db.Model, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    nome = Column(String(120), nullable=False)
    email = Column(String(180), nullable=False, unique=True, index=True)
    _password_hash = Column("password_hash", String(255), nullable=True)
    role = Column(RoleEnum, nullable=False, default="CLIENT", index=True)
    phone = Column(String(40), nullable=True)
    ativo = Column(Boolean, default=True, nullable=False)
    ultimo_login = Column(DateTime, nullable=True)

    def set_password(self, raw: str):
        if not raw or len(raw) < 6:
            raise ValueError("Senha muito curta")
        # PBKDF2 do Werkzeug evita dependência de bcrypt
        self._password_hash = _wzh(raw, method="pbkdf2:sha256", salt_length=16)

    def check_password(self, raw: str) -> bool:
        if not self._password_hash:
            return False
        try:
            return _wzc(self._password_hash, raw)
        except (TypeError, ValueError):
            return False

    @validates("email")
    def _val_email(self, key, value):
        if not value or "@" not in value:
            raise ValueError("Email inválido")
        return value.strip().lower()

    def __repr__(self):
        return f"<User {self.id} {self.email} {self.role}>"


def _new_feed_token() -> str:
    return secrets.token_urlsafe(24)


class Professional(db.Model, TimestampMixin):
    __tablename__ = "professionals"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    especialidade = Column(String(120), nullable=True)
    dia_pagamento = Column(Integer, default=5, nullable=False)
    calendar_feed_token = Column(String(64), nullable=False, default=_new_feed_token)
    ativo = Column(Boolean, default=True, nullable=False)

    user = relationship("User", backref=backref("professional", uselist=False))

    __table_args__ = (
        CheckConstraint("dia_pagamento BETWEEN 1 AND 31", name="ck_professionals_dia_pagamento"),
    )

    @property
    def nome(self) -> str:
        return self.user.nome if self.user else ""


class Service(db.Model, TimestampMixin):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    price = Column(MONEY, default=Decimal("0.00"), nullable=False)
    duration_minutes = Column(Integer, default=60, nullable=False)
    commission_percentage = Column(PERCENT, default=Decimal("0.00"), nullable=False)
    ativo = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_services_price"),
        CheckConstraint("commission_percentage >= 0 AND commission_percentage <= 100", name="ck_services_commission"),
    )

    @validates("price")
    def _val_money(self, key, value):
        return _as_money(value)


class Appointment(db.Model, TimestampMixin):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    professional_id = Column(Integer, ForeignKey("professionals.id", ondelete="RESTRICT"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="RESTRICT"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(AppointmentStatusEnum, default="PENDING", nullable=False, index=True)
    notes = Column(Text, nullable=True)
    payment_status = Column(PaymentStatusEnum, nullable=True, index=True)
    payment_amount = Column(MONEY, nullable=True)
    payment_date = Column(DateTime, nullable=True)
    payment_method = Column(String(30), nullable=True)
    payment_notes = Column(Text, nullable=True)

    client = relationship("User")
    professional = relationship("Professional", backref=backref("appointments", lazy="dynamic"))
    service = relationship("Service")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_appointments_horario"),
        CheckConstraint("payment_amount IS NULL OR payment_amount >= 0", name="ck_appointments_payment_amount"),
    )


class AppointmentFollowIn(db.Model, TimestampMixin):
    """Briefing de chegada do cliente, um por atendimento."""
    __tablename__ = "appointment_follow_ins"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, unique=True)
    client_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    client_mood = Column(String(20), nullable=True)
    arrived_on_time = Column(Boolean, nullable=True)
    arrival_notes = Column(Text, nullable=True)
    coffee_today = Column(Boolean, nullable=True)
    coffee_strength_today = Column(String(20), nullable=True)
    music_today = Column(String(200), nullable=True)
    temperature_today = Column(String(60), nullable=True)
    special_requests = Column(Text, nullable=True)
    time_constraints = Column(Text, nullable=True)
    professional_notes = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(120), nullable=True)

    appointment = relationship("Appointment", backref=backref("follow_in", uselist=False))


class AppointmentFollowUp(db.Model, TimestampMixin):
    """Registro pós-atendimento. Gravá-lo conclui o atendimento."""
    __tablename__ = "appointment_follow_ups"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, unique=True)
    client_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    service_reason = Column(String(200), nullable=True)
    event_date = Column(Date, nullable=True)
    event_importance = Column(String(20), nullable=True)
    conversation_topics = Column(JSON, nullable=True)
    personal_milestones = Column(JSON, nullable=True)
    follow_up_topics = Column(JSON, nullable=True)
    reminders = Column(JSON, nullable=True)
    client_satisfaction = Column(Integer, nullable=True)
    service_quality = Column(String(20), nullable=True)
    client_feedback = Column(Text, nullable=True)
    products_used = Column(JSON, nullable=True)
    products_recommended = Column(JSON, nullable=True)
    technical_notes = Column(Text, nullable=True)
    next_service_suggestion = Column(Text, nullable=True)
    profile_updates = Column(JSON, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(120), nullable=True)

    appointment = relationship("Appointment", backref=backref("follow_up", uselist=False))

    __table_args__ = (
        CheckConstraint("client_satisfaction IS NULL OR (client_satisfaction BETWEEN 1 AND 5)",
                        name="ck_follow_ups_satisfacao"),
    )


# =============================================================================
# Estoque
# =============================================================================

class Fornecedor(db.Model, TimestampMixin):
    __tablename__ = "fornecedores"

    id = Column(Integer, primary_key=True)
    nome_fantasia = Column(String(180), nullable=False)
    cnpj = Column(String(18), nullable=True)
    contato = Column(String(120), nullable=True)
    telefone = Column(String(40), nullable=True)
    email = Column(String(180), nullable=True)
    ativo = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("nome_fantasia", name="uq_fornecedores_nome"),
    )


class Produto(db.Model, TimestampMixin, AuditMixin):
    __tablename__ = "produtos"

    id = Column(Integer, primary_key=True)
    nome = Column(String(200), nullable=False, index=True)
    categoria = Column(String(120), nullable=True)
    quantidade_atual = Column(Integer, default=0, nullable=False)
    quantidade_minima = Column(Integer, default=0, nullable=False)
    preco_custo = Column(MONEY, default=Decimal("0.00"), nullable=False)
    preco_venda = Column(MONEY, default=Decimal("0.00"), nullable=False)
    validade = Column(Date, nullable=True)
    fornecedor_principal_id = Column(Integer, ForeignKey("fornecedores.id", ondelete="SET NULL"), nullable=True, index=True)
    ativo = Column(Boolean, default=True, nullable=False)

    fornecedor_principal = relationship("Fornecedor")

    __table_args__ = (
        CheckConstraint("quantidade_atual >= 0", name="ck_produtos_qtd_nao_negativa"),
        CheckConstraint("quantidade_minima >= 0", name="ck_produtos_qtd_minima"),
        CheckConstraint("preco_custo >= 0", name="ck_produtos_custo_nao_negativo"),
        CheckConstraint("preco_venda >= 0", name="ck_produtos_preco_nao_negativo"),
    )

    @validates("preco_custo", "preco_venda")
    def _val_money(self, key, value):
        return _as_money(value)

    @property
    def abaixo_minimo(self) -> bool:
        return (self.quantidade_atual or 0) < (self.quantidade_minima or 0)

    def __repr__(self):
        return f"<Produto {self.id} {self.nome} qtd={self.quantidade_atual}>"


class MovimentacaoEstoque(db.Model, AuditMixin):
    """Registro append-only do razão de estoque."""
    __tablename__ = "movimentacoes_estoque"

    id = Column(BIGID, primary_key=True)
    produto_id = Column(Integer, ForeignKey("produtos.id", ondelete="RESTRICT"), nullable=False, index=True)
    tipo = Column(MovimentoEnum, nullable=False, index=True)
    quantidade = Column(Integer, nullable=False)
    origem = Column(String(200), nullable=True)
    data_hora = Column(DateTime, default=datetime.utcnow, nullable=False)
    validade = Column(Date, nullable=True)

    produto = relationship("Produto", backref=backref("movimentacoes", lazy="dynamic"))

    __table_args__ = (
        # ajuste registra a contagem absoluta, que pode ser zero
        CheckConstraint("quantidade > 0 OR (tipo = 'ajuste' AND quantidade >= 0)", name="ck_movimentacoes_qtd"),
        Index("ix_movimentacoes_produto_data", "produto_id", "data_hora"),
    )


class LoteProduto(db.Model, TimestampMixin):
    __tablename__ = "lotes_produto"

    id = Column(Integer, primary_key=True)
    produto_id = Column(Integer, ForeignKey("produtos.id", ondelete="CASCADE"), nullable=False, index=True)
    lote = Column(String(40), nullable=False)
    validade = Column(Date, nullable=False)
    quantidade = Column(Integer, nullable=False)

    produto = relationship("Produto", backref=backref("lotes", lazy="dynamic"))

    __table_args__ = (
        UniqueConstraint("produto_id", "lote", name="uq_lotes_produto_lote"),
        CheckConstraint("quantidade >= 0", name="ck_lotes_qtd"),
    )


class ServicoProdutoVinculo(db.Model, TimestampMixin):
    __tablename__ = "servico_produto_vinculos"

    id = Column(Integer, primary_key=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    produto_id = Column(Integer, ForeignKey("produtos.id", ondelete="CASCADE"), nullable=False, index=True)
    quantidade = Column(Integer, default=1, nullable=False)
    obrigatorio = Column(Boolean, default=False, nullable=False)
    baixa_automatica = Column(Boolean, default=False, nullable=False)
    observacoes = Column(String(500), nullable=True)

    service = relationship("Service", backref=backref("vinculos_produto", lazy="dynamic"))
    produto = relationship("Produto")

    __table_args__ = (
        UniqueConstraint("service_id", "produto_id", name="uq_servico_produto_vinculos_par"),
        CheckConstraint("quantidade > 0", name="ck_servico_produto_vinculos_qtd"),
    )


class ConsumoServicoProduto(db.Model):
    """Quanto de cada produto um atendimento concluído consumiu."""
    __tablename__ = "consumos_servicos_produtos"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="SET NULL"), nullable=True, index=True)
    produto_id = Column(Integer, ForeignKey("produtos.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantidade = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    appointment = relationship("Appointment", backref=backref("consumos", lazy="dynamic"))
    produto = relationship("Produto")

    __table_args__ = (
        CheckConstraint("quantidade > 0", name="ck_consumos_qtd"),
    )


class PedidoCompra(db.Model, TimestampMixin, AuditMixin):
    __tablename__ = "pedidos_compra"

    id = Column(Integer, primary_key=True)
    produto_id = Column(Integer, ForeignKey("produtos.id", ondelete="RESTRICT"), nullable=False, index=True)
    fornecedor_id = Column(Integer, ForeignKey("fornecedores.id", ondelete="SET NULL"), nullable=True, index=True)
    quantidade = Column(Integer, nullable=False)
    status = Column(PedidoCompraStatusEnum, default="pendente", nullable=False, index=True)

    produto = relationship("Produto")
    fornecedor = relationship("Fornecedor")

    __table_args__ = (
        CheckConstraint("quantidade > 0", name="ck_pedidos_compra_qtd"),
    )


# =============================================================================
# Orçamentos
# =============================================================================

class Orcamento(db.Model, TimestampMixin, AuditMixin):
    __tablename__ = "orcamentos"

    id = Column(Integer, primary_key=True)
    numero_orcamento = Column(String(20), nullable=True, unique=True)
    # Dados do cliente copiados na criação (não é referência viva)
    client_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    client_name = Column(String(180), nullable=False)
    client_email = Column(String(180), nullable=False)
    client_phone = Column(String(40), nullable=True)
    client_address = Column(String(255), nullable=True)
    dados_empresa = Column(Text, nullable=False)
    subtotal = Column(MONEY, default=Decimal("0.00"), nullable=False)
    desconto = Column(MONEY, default=Decimal("0.00"), nullable=False)
    total = Column(MONEY, default=Decimal("0.00"), nullable=False)
    data_validade = Column(Date, nullable=False, index=True)
    status = Column(OrcamentoStatusEnum, default="RASCUNHO", nullable=False, index=True)
    observacoes = Column(Text, nullable=True)
    termos_condicoes = Column(Text, nullable=True)
    enviado_em = Column(DateTime, nullable=True)
    enviado_para = Column(String(180), nullable=True)

    itens = relationship(
        "OrcamentoItem", cascade="all, delete-orphan", backref="orcamento",
        order_by="OrcamentoItem.ordem",
    )
    created_by = relationship("User", foreign_keys="Orcamento.created_by_id")

    __table_args__ = (
        CheckConstraint("subtotal >= 0", name="ck_orcamentos_subtotal"),
        CheckConstraint("desconto >= 0", name="ck_orcamentos_desconto"),
        CheckConstraint("total >= 0", name="ck_orcamentos_total"),
    )

    @validates("subtotal", "desconto", "total")
    def _val_money(self, key, value):
        return _as_money(value)


class OrcamentoItem(db.Model):
    __tablename__ = "orcamento_itens"

    id = Column(Integer, primary_key=True)
    orcamento_id = Column(Integer, ForeignKey("orcamentos.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="SET NULL"), nullable=True, index=True)
    descricao = Column(String(255), nullable=False)
    quantidade = Column(Integer, nullable=False)
    valor_unitario = Column(MONEY, nullable=False)
    valor_total = Column(MONEY, nullable=False)
    ordem = Column(Integer, nullable=False)

    service = relationship("Service")

    __table_args__ = (
        CheckConstraint("quantidade >= 1", name="ck_orcamento_itens_qtd"),
        CheckConstraint("valor_unitario >= 0", name="ck_orcamento_itens_unitario"),
        CheckConstraint("valor_total >= 0", name="ck_orcamento_itens_total"),
        CheckConstraint("ordem >= 1", name="ck_orcamento_itens_ordem"),
    )

    @validates("valor_unitario", "valor_total")
    def _val_money(self, key, value):
        return _as_money(value)


# =============================================================================
# Financeiro
# =============================================================================

class ContaPagar(db.Model, TimestampMixin):
    __tablename__ = "contas_pagar"

    id = Column(Integer, primary_key=True)
    descricao = Column(String(255), nullable=False)
    categoria = Column(String(30), nullable=False, default="OUTROS", index=True)
    valor = Column(MONEY, nullable=False)
    data_vencimento = Column(Date, nullable=False, index=True)
    data_pagamento = Column(DateTime, nullable=True)
    status = Column(ContaPagarStatusEnum, default="PENDENTE", nullable=False, index=True)
    metodo_pagamento = Column(String(30), nullable=True)
    observacoes = Column(Text, nullable=True)
    fornecedor_id = Column(Integer, ForeignKey("fornecedores.id", ondelete="SET NULL"), nullable=True, index=True)
    pedido_compra_id = Column(Integer, ForeignKey("pedidos_compra.id", ondelete="SET NULL"), nullable=True, index=True)

    fornecedor = relationship("Fornecedor")
    pedido_compra = relationship("PedidoCompra")

    __table_args__ = (
        CheckConstraint("valor >= 0", name="ck_contas_pagar_valor"),
    )

    @validates("valor")
    def _val_money(self, key, value):
        return _as_money(value)


class Comissao(db.Model, TimestampMixin):
    __tablename__ = "comissoes"

    id = Column(Integer, primary_key=True)
    professional_id = Column(Integer, ForeignKey("professionals.id", ondelete="CASCADE"), nullable=False, index=True)
    periodo_inicio = Column(Date, nullable=False)
    periodo_fim = Column(Date, nullable=False)
    total_atendimentos = Column(Integer, default=0, nullable=False)
    total_faturamento = Column(MONEY, default=Decimal("0.00"), nullable=False)
    total_comissao = Column(MONEY, default=Decimal("0.00"), nullable=False)
    bonificacoes = Column(MONEY, default=Decimal("0.00"), nullable=False)
    valor_final = Column(MONEY, default=Decimal("0.00"), nullable=False)
    status = Column(ComissaoStatusEnum, default="CALCULADO", nullable=False)
    conta_pagar_id = Column(Integer, ForeignKey("contas_pagar.id", ondelete="SET NULL"), nullable=True)

    professional = relationship("Professional")
    conta_pagar = relationship("ContaPagar")
    atendimentos = relationship("ComissaoAtendimento", cascade="all, delete-orphan", backref="comissao")

    __table_args__ = (
        UniqueConstraint("professional_id", "periodo_inicio", "periodo_fim", name="uq_comissoes_periodo"),
    )


class ComissaoAtendimento(db.Model):
    __tablename__ = "comissao_atendimentos"

    id = Column(Integer, primary_key=True)
    comissao_id = Column(Integer, ForeignKey("comissoes.id", ondelete="CASCADE"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)
    valor_servico = Column(MONEY, default=Decimal("0.00"), nullable=False)
    percentual_comissao = Column(PERCENT, default=Decimal("0.00"), nullable=False)
    valor_comissao = Column(MONEY, default=Decimal("0.00"), nullable=False)


# =============================================================================
# Configuração e auditoria
# =============================================================================

class AppSetting(db.Model):
    __tablename__ = "app_settings"

    key = Column(String(60), primary_key=True)
    value_int = Column(Integer, nullable=True)
    value_json = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = Column(BIGID, primary_key=True)
    entidade = Column(String(60), nullable=False)
    entidade_id = Column(Integer, nullable=True)
    acao = Column(String(60), nullable=False)  # created, updated, deleted, movement, adjust, sent
    payload_json = Column(JSON, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    user = relationship("User")


# =============================================================================
# Índices
# =============================================================================

Index("ix_produtos_nome_lower", func.lower(Produto.nome))
Index("ix_fornecedores_nome_lower", func.lower(Fornecedor.nome_fantasia))


# =============================================================================
# Seeds
# =============================================================================

def ensure_admin():
    """
    Cria o usuário administrador, se não existir.
    Usa variáveis de ambiente ADMIN_EMAIL e ADMIN_PASS.
    """
    admin_email = os.getenv("ADMIN_EMAIL", "admin@salao.com.br").lower()
    admin_pass = os.getenv("ADMIN_PASS", "admin123")

    user = User.query.filter_by(email=admin_email).first()
    if not user:
        user = User(nome="Administrador", email=admin_email, role="ADMIN", ativo=True)
        user.set_password(admin_pass)
        db.session.add(user)
    return user
