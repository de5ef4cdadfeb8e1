# salao/core/forms.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Any

from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import (
    Form, StringField, PasswordField, BooleanField, IntegerField,
    SelectField, TextAreaField, FieldList, FormField
)
from wtforms.fields.core import Field
from wtforms.validators import (
    DataRequired, InputRequired, Optional as Opt, Length, NumberRange, Email, Regexp,
    ValidationError as FormValidationError
)

from salao.core.models import (
    ORCAMENTO_STATUS, APPOINTMENT_STATUS, PAYMENT_STATUS, CONTA_PAGAR_STATUS,
    EVENT_IMPORTANCE, SERVICE_QUALITY, CLIENT_MOOD, COFFEE_STRENGTH,
)
from salao.core.services import ValidationError


# =============================================================================
# Utilidades
# =============================================================================

ISO_DATE = r"^\d{4}-\d{2}-\d{2}$"

def _q2(v: Decimal) -> Decimal:
    return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def parse_decimal(text: Optional[str]) -> Decimal:
    """
    Converte string para Decimal aceitando vírgula ou ponto.
    Vazio vira 0.
    """
    if text is None:
        return Decimal("0")
    s = str(text).strip()
    if s == "":
        return Decimal("0")
    s = s.replace(".", "").replace(",", ".") if s.count(",") == 1 and s.count(".") > 0 else s.replace(",", ".")
    try:
        d = Decimal(s)
    except InvalidOperation:
        raise ValueError("Valor numérico inválido")
    if not d.is_finite():
        raise ValueError("Valor numérico inválido")
    return _q2(d)

def json_formdata(payload: Any, prefix: str = "", out: Optional[MultiDict] = None) -> MultiDict:
    """
    Achata um corpo JSON no formato que o WTForms espera:
    {"itens": [{"descricao": "x"}]} -> itens-0-descricao=x.
    Valores nulos são omitidos (campo ausente).
    """
    out = MultiDict() if out is None else out
    if isinstance(payload, dict):
        for k, v in payload.items():
            json_formdata(v, f"{prefix}-{k}" if prefix else str(k), out)
    elif isinstance(payload, (list, tuple)):
        for i, v in enumerate(payload):
            json_formdata(v, f"{prefix}-{i}" if prefix else str(i), out)
    elif payload is None:
        pass
    elif isinstance(payload, bool):
        out.add(prefix, "y" if payload else "false")
    else:
        out.add(prefix, str(payload))
    return out


# =============================================================================
# Campos customizados
# =============================================================================

class DecimalMoneyField(Field):
    """
    Entrada textual que vira Decimal com 2 casas.
    """
    def _value(self):
        return str(self.data) if isinstance(self.data, Decimal) else (self.data or "")

    def process_formdata(self, valuelist):
        if valuelist:
            try:
                self.data = parse_decimal(valuelist[0])
            except ValueError as e:
                self.data = None
                raise ValueError(str(e))


class ApiForm(FlaskForm):
    """Base dos formulários JSON; o CSRF já é checado pelo CSRFProtect."""
    class Meta:
        csrf = False

    @classmethod
    def from_json(cls, payload: Optional[dict], **kwargs):
        return cls(formdata=json_formdata(payload or {}), **kwargs)


# =============================================================================
# Autenticação
# =============================================================================

class LoginForm(ApiForm):
    email = StringField("E-mail", validators=[DataRequired(), Email(), Length(max=180)])
    password = PasswordField("Senha", validators=[DataRequired(), Length(min=6, max=72)])
    remember = BooleanField("Manter conectado")


# =============================================================================
# Estoque
# =============================================================================

class MovimentacaoForm(ApiForm):
    produto_id = IntegerField("Produto", validators=[DataRequired()])
    tipo = SelectField("Tipo", choices=[("entrada", "Entrada"), ("saida", "Saída")], validators=[DataRequired()])
    quantidade = IntegerField("Quantidade", validators=[DataRequired(), NumberRange(min=1)])
    origem = StringField("Origem", validators=[Opt(), Length(max=200)])
    valor_unitario = DecimalMoneyField("Valor unitário", validators=[Opt(), NumberRange(min=0)])
    fornecedor_id = IntegerField("Fornecedor", validators=[Opt()])
    pedido_compra_id = IntegerField("Pedido de compra", validators=[Opt()])
    data_vencimento = StringField("Vencimento", validators=[Opt()])

class ProdutoForm(ApiForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(max=200)])
    categoria = StringField("Categoria", validators=[Opt(), Length(max=120)])
    quantidade_minima = IntegerField("Quantidade mínima", validators=[Opt(), NumberRange(min=0)])
    quantidade_atual = IntegerField("Quantidade inicial", validators=[Opt(), NumberRange(min=0)])
    preco_custo = DecimalMoneyField("Preço de custo", validators=[Opt(), NumberRange(min=0)])
    preco_venda = DecimalMoneyField("Preço de venda", validators=[Opt(), NumberRange(min=0)])
    # Formato livre: datas não reconhecidas são descartadas no cadastro
    validade = StringField("Validade", validators=[Opt()])
    fornecedor_principal_id = IntegerField("Fornecedor principal", validators=[Opt()])

    def validate_preco_venda(self, field):
        custo = self.preco_custo.data or Decimal("0")
        if (field.data or Decimal("0")) < custo:
            raise FormValidationError("Preço de venda menor que o custo")

class AjusteEstoqueForm(ApiForm):
    quantidade = IntegerField("Quantidade contada", validators=[InputRequired(), NumberRange(min=0)])
    motivo = StringField("Motivo", validators=[Opt(), Length(max=200)])

class FornecedorForm(ApiForm):
    nome_fantasia = StringField("Nome", validators=[DataRequired(), Length(max=180)])
    cnpj = StringField("CNPJ", validators=[Opt(), Length(max=18)])
    contato = StringField("Contato", validators=[Opt(), Length(max=120)])
    telefone = StringField("Telefone", validators=[Opt(), Length(max=40)])
    email = StringField("E-mail", validators=[Opt(), Email(), Length(max=180)])

class PedidoCompraForm(ApiForm):
    produto_id = IntegerField("Produto", validators=[DataRequired()])
    quantidade = IntegerField("Quantidade", validators=[DataRequired(), NumberRange(min=1)])
    fornecedor_id = IntegerField("Fornecedor", validators=[Opt()])

class RecebimentoPedidoForm(ApiForm):
    pedido_compra_id = IntegerField("Pedido de compra", validators=[DataRequired()])
    valor_unitario = DecimalMoneyField("Valor unitário", validators=[Opt(), NumberRange(min=0)])
    data_vencimento = StringField("Vencimento", validators=[Opt(), Regexp(ISO_DATE)])
    fornecedor_id = IntegerField("Fornecedor", validators=[Opt()])

class VinculoForm(ApiForm):
    """Texto livre; a normalização fica no serviço ("abc" vira 1, 2.3 vira 3)."""
    id = StringField("Vínculo", validators=[Opt(), Length(max=20)])
    service_id = StringField("Serviço", validators=[Opt(), Length(max=20)])
    produto_id = StringField("Produto", validators=[Opt(), Length(max=20)])
    quantidade = StringField("Quantidade", validators=[Opt(), Length(max=20)])
    obrigatorio = StringField("Obrigatório", validators=[Opt()])
    baixa_automatica = StringField("Baixa automática", validators=[Opt()])
    observacoes = TextAreaField("Observações", validators=[Opt(), Length(max=500)])


# =============================================================================
# Orçamentos
# =============================================================================

class OrcamentoItemForm(Form):
    service_id = IntegerField("Serviço", validators=[Opt()])
    descricao = StringField("Descrição", validators=[DataRequired(), Length(max=255)])
    quantidade = IntegerField("Quantidade", validators=[DataRequired(), NumberRange(min=1)])
    valor_unitario = DecimalMoneyField("Valor unitário", validators=[InputRequired(), NumberRange(min=0)])
    valor_total = DecimalMoneyField("Valor total", validators=[InputRequired(), NumberRange(min=0)])
    ordem = IntegerField("Ordem", validators=[Opt(), NumberRange(min=1)])

class OrcamentoForm(ApiForm):
    client_id = IntegerField("Cliente", validators=[Opt()])
    client_name = StringField("Nome do cliente", validators=[DataRequired(), Length(max=180)])
    client_email = StringField("E-mail do cliente", validators=[DataRequired(), Email(), Length(max=180)])
    client_phone = StringField("Telefone", validators=[Opt(), Length(max=40)])
    client_address = StringField("Endereço", validators=[Opt(), Length(max=255)])
    dados_empresa = TextAreaField("Dados da empresa", validators=[DataRequired()])
    desconto = DecimalMoneyField("Desconto", validators=[Opt(), NumberRange(min=0)])
    data_validade = StringField("Validade", validators=[DataRequired(), Regexp(ISO_DATE, message="Data ISO esperada (AAAA-MM-DD)")])
    observacoes = TextAreaField("Observações", validators=[Opt()])
    termos_condicoes = TextAreaField("Termos e condições", validators=[Opt()])
    itens = FieldList(FormField(OrcamentoItemForm), min_entries=0)

    def validate_itens(self, field):
        if not field.entries:
            raise FormValidationError("Inclua pelo menos 1 item")

class OrcamentoUpdateForm(OrcamentoForm):
    """Atualização parcial: só os campos enviados são validados e aplicados."""
    status = SelectField("Status", choices=[(s, s) for s in ORCAMENTO_STATUS], validators=[Opt()])

    def __init__(self, *args, presentes=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.presentes = set(presentes)
        for name in ("client_name", "client_email", "dados_empresa", "data_validade"):
            if name not in self.presentes:
                self[name].validators = [Opt()]

    def validate_itens(self, field):
        if "itens" in self.presentes and not field.entries:
            raise FormValidationError("Inclua pelo menos 1 item")

class EnvioOrcamentoForm(ApiForm):
    email = StringField("E-mail", validators=[DataRequired(), Email(), Length(max=180)])
    subject = StringField("Assunto", validators=[Opt(), Length(min=1, max=200)])
    message = TextAreaField("Mensagem", validators=[Opt()])


# =============================================================================
# Catálogo e agenda
# =============================================================================

class ServiceForm(ApiForm):
    name = StringField("Nome", validators=[DataRequired(), Length(max=120)])
    price = DecimalMoneyField("Preço", validators=[InputRequired(), NumberRange(min=0)])
    duration_minutes = IntegerField("Duração (min)", validators=[Opt(), NumberRange(min=1, max=24 * 60)])
    commission_percentage = DecimalMoneyField("Comissão %", validators=[Opt(), NumberRange(min=0, max=100)])

class ProfessionalForm(ApiForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(max=120)])
    email = StringField("E-mail", validators=[DataRequired(), Email(), Length(max=180)])
    phone = StringField("Telefone", validators=[Opt(), Length(max=40)])
    especialidade = StringField("Especialidade", validators=[Opt(), Length(max=120)])
    dia_pagamento = IntegerField("Dia de pagamento", validators=[Opt(), NumberRange(min=1, max=31)])

class AppointmentForm(ApiForm):
    client_id = IntegerField("Cliente", validators=[Opt()])
    professional_id = IntegerField("Profissional", validators=[DataRequired()])
    service_id = IntegerField("Serviço", validators=[DataRequired()])
    date = StringField("Data", validators=[DataRequired(), Regexp(ISO_DATE)])
    start_time = StringField("Início", validators=[DataRequired(), Regexp(r"^\d{2}:\d{2}(:\d{2})?$")])
    end_time = StringField("Fim", validators=[Opt(), Regexp(r"^\d{2}:\d{2}(:\d{2})?$")])
    notes = TextAreaField("Observações", validators=[Opt()])

class AppointmentStatusForm(ApiForm):
    status = SelectField("Status", choices=[(s, s) for s in APPOINTMENT_STATUS], validators=[DataRequired()])

class FollowUpForm(ApiForm):
    service_reason = StringField("Motivo do serviço", validators=[Opt(), Length(max=200)])
    event_date = StringField("Data do evento", validators=[Opt(), Regexp(ISO_DATE)])
    event_importance = SelectField("Importância", choices=[(s, s) for s in EVENT_IMPORTANCE], validators=[Opt()])
    conversation_topics = FieldList(StringField(validators=[Length(max=200)]), min_entries=0)
    personal_milestones = FieldList(StringField(validators=[Length(max=200)]), min_entries=0)
    follow_up_topics = FieldList(StringField(validators=[Length(max=200)]), min_entries=0)
    reminders = FieldList(StringField(validators=[Length(max=200)]), min_entries=0)
    client_satisfaction = IntegerField("Satisfação", validators=[Opt(), NumberRange(min=1, max=5)])
    service_quality = SelectField("Qualidade", choices=[(s, s) for s in SERVICE_QUALITY], validators=[Opt()])
    client_feedback = TextAreaField("Feedback", validators=[Opt()])
    products_used = FieldList(StringField(validators=[Length(max=200)]), min_entries=0)
    products_recommended = FieldList(StringField(validators=[Length(max=200)]), min_entries=0)
    technical_notes = TextAreaField("Notas técnicas", validators=[Opt()])
    next_service_suggestion = TextAreaField("Próximo serviço", validators=[Opt()])
    completed_by = StringField("Responsável", validators=[DataRequired(), Length(max=120)])

class FollowInForm(ApiForm):
    client_mood = SelectField("Humor", choices=[(s, s) for s in CLIENT_MOOD], validators=[Opt()])
    arrived_on_time = BooleanField("Chegou no horário")
    arrival_notes = TextAreaField("Observações da chegada", validators=[Opt()])
    coffee_today = BooleanField("Café hoje")
    coffee_strength_today = SelectField("Força do café", choices=[(s, s) for s in COFFEE_STRENGTH], validators=[Opt()])
    music_today = StringField("Música", validators=[Opt(), Length(max=200)])
    temperature_today = StringField("Temperatura", validators=[Opt(), Length(max=60)])
    special_requests = TextAreaField("Pedidos especiais", validators=[Opt()])
    time_constraints = TextAreaField("Restrições de tempo", validators=[Opt()])
    professional_notes = TextAreaField("Notas do profissional", validators=[Opt()])
    completed_by = StringField("Responsável", validators=[DataRequired(), Length(max=120)])


# =============================================================================
# Financeiro
# =============================================================================

CATEGORIAS_CONTA = ["FORNECEDOR", "ALUGUEL", "SALARIO", "COMISSAO", "IMPOSTO", "SERVICO", "OUTROS"]

class ContaPagarForm(ApiForm):
    descricao = StringField("Descrição", validators=[DataRequired(), Length(max=255)])
    categoria = SelectField("Categoria", choices=[(c, c) for c in CATEGORIAS_CONTA], validators=[Opt()])
    valor = DecimalMoneyField("Valor", validators=[Opt(), NumberRange(min=0)])
    data_vencimento = StringField("Vencimento", validators=[DataRequired(), Regexp(ISO_DATE)])
    status = SelectField("Status", choices=[(s, s) for s in CONTA_PAGAR_STATUS], validators=[Opt()])
    metodo_pagamento = StringField("Método", validators=[Opt(), Length(max=30)])
    observacoes = TextAreaField("Observações", validators=[Opt()])
    fornecedor_id = IntegerField("Fornecedor", validators=[Opt()])
    pedido_compra_id = IntegerField("Pedido de compra", validators=[Opt()])

class RecorrenciaForm(ApiForm):
    descricao = StringField("Descrição", validators=[DataRequired(), Length(max=220)])
    categoria = SelectField("Categoria", choices=[(c, c) for c in CATEGORIAS_CONTA], validators=[Opt()])
    valor = DecimalMoneyField("Valor", validators=[InputRequired(), NumberRange(min=0)])
    inicio = StringField("Início", validators=[DataRequired(), Regexp(ISO_DATE)])
    parcelas = IntegerField("Parcelas", validators=[DataRequired(), NumberRange(min=1, max=120)])
    dia_vencimento = IntegerField("Dia de vencimento", validators=[Opt(), NumberRange(min=1, max=31)])
    periodicidade = SelectField(
        "Periodicidade",
        choices=[("MENSAL", "Mensal"), ("SEMANAL", "Semanal"), ("QUINZENAL", "Quinzenal")],
        validators=[Opt()],
    )
    fornecedor_id = IntegerField("Fornecedor", validators=[Opt()])
    observacoes = TextAreaField("Observações", validators=[Opt()])

class RecebimentoForm(ApiForm):
    id = IntegerField("Atendimento", validators=[DataRequired()])
    payment_status = SelectField("Status", choices=[(s, s) for s in PAYMENT_STATUS], validators=[Opt()])
    payment_amount = DecimalMoneyField("Valor", validators=[Opt(), NumberRange(min=0)])
    payment_date = StringField("Data", validators=[Opt(), Regexp(ISO_DATE)])
    payment_method = StringField("Método", validators=[Opt(), Length(max=30)])
    payment_notes = TextAreaField("Observações", validators=[Opt()])

class AprovarComissaoForm(ApiForm):
    profissional_id = IntegerField("Profissional", validators=[DataRequired()])
    mes = StringField("Mês", validators=[DataRequired(), Regexp(r"^\d{4}-\d{2}$")])
    bonificacoes = DecimalMoneyField("Bonificações", validators=[Opt(), NumberRange(min=0)])


# =============================================================================
# Validação de corpo JSON
# =============================================================================

def validar_json(form_cls, payload: Optional[dict], **kwargs):
    """Instancia o form a partir do JSON; erros viram 400 com form.errors."""
    if payload is not None and not isinstance(payload, dict):
        raise ValidationError("JSON inválido")
    form = form_cls.from_json(payload, **kwargs)
    if not form.validate():
        raise ValidationError("Validation error", details=form.errors)
    return form

def dados_enviados(form, payload: dict) -> dict:
    """Somente os campos presentes no corpo (atualização parcial)."""
    return {k: v for k, v in form.data.items() if k in payload}
