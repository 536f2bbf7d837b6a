"""Conversational finance assistant.

Each user message goes through one classification call to the LLM. Actions
(add transaction, budget, goal or bank) are validated locally and applied
to the ``FinanceStore``; queries and clarifications get a second call that
carries a snapshot of the user's month. Every failure ends up as an
error-flagged chat message, never as an exception.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from categorizer import DEFAULT_CATEGORY, smart_categorize
from errors import FinanceError, LLMAPIError, LLMConfigError, ValidationError
from finance_store import FinanceStore
from formatting import format_date
from gemini import REPHRASE_MESSAGE, clarification

logger = logging.getLogger(__name__)

GREETING = (
    "Olá! 👋 Sou seu assistente financeiro inteligente. Posso ajudar você a:\n\n"
    "💰 Adicionar transações e receitas\n"
    "📊 Consultar saldos e gastos\n"
    "🎯 Criar orçamentos e metas\n"
    "📈 Analisar seus hábitos financeiros\n"
    "🏦 Gerenciar bancos e cartões\n\n"
    "Como posso ajudar você hoje?"
)

CONFIG_ERROR_MESSAGE = (
    "Desculpe, ocorreu um erro ao processar sua mensagem. "
    "A API do Gemini não está configurada corretamente."
)
SYSTEM_ERROR_MESSAGE = (
    "Desculpe, ocorreu um erro ao processar sua mensagem. "
    "Problema na comunicação com a IA. Tente novamente."
)

REQUIRED_FIELDS = {
    "add_transaction": ("amount", "description"),
    "add_budget": ("category", "amount"),
    "add_goal": ("title", "amount", "targetDate"),
    "add_bank": ("name", "bankType"),
}

INCOMPLETE_MESSAGES = {
    "add_transaction": "Dados incompletos para criar a transação",
    "add_budget": "Dados incompletos para criar o orçamento",
    "add_goal": "Dados incompletos para criar a meta",
    "add_bank": "Dados incompletos para adicionar o banco",
}

BANK_TYPE_LABELS = {
    "credit": "Cartão de Crédito",
    "debit": "Cartão de Débito",
    "account": "Conta Corrente",
}

ACTION_PROMPT = """
Você é um assistente financeiro inteligente. Analise a mensagem e determine se o usuário quer EXECUTAR uma ação ou fazer uma CONSULTA.

Mensagem: "{message}"

IMPORTANTE: Responda SEMPRE em JSON válido.

Para ADICIONAR TRANSAÇÃO (despesa/receita/gasto), use:
{{
  "type": "action",
  "action": "add_transaction",
  "transactionType": "expense" ou "income",
  "amount": valor_numerico,
  "category": "Alimentação" ou "Transporte" ou "Moradia" ou "Lazer" ou "Saúde" ou "Educação" ou "Salário" ou "Investimentos" ou "Outros",
  "description": "descrição_clara",
  "paymentMethod": "money"
}}

CATEGORIZAÇÃO INTELIGENTE:
- iFood, Uber Eats, restaurante, comida → Alimentação
- Uber, taxi, gasolina, ônibus → Transporte
- Aluguel, luz, água, internet → Moradia
- Cinema, bar, viagem → Lazer
- Médico, farmácia, remédio → Saúde
- Curso, escola, livro → Educação
- Salário, pagamento, trabalho → Salário (income)
- Dividendo, juros, investimento → Investimentos (income)

Para CRIAR ORÇAMENTO, use:
{{
  "type": "action",
  "action": "add_budget",
  "category": "categoria",
  "amount": valor_numerico,
  "alertThreshold": 80
}}

Para CRIAR META, use:
{{
  "type": "action",
  "action": "add_goal",
  "title": "título_da_meta",
  "amount": valor_numerico,
  "category": "categoria",
  "targetDate": "AAAA-MM-DD",
  "priority": "medium"
}}

Para ADICIONAR BANCO OU CARTÃO, use:
{{
  "type": "action",
  "action": "add_bank",
  "name": "nome_do_banco",
  "bankType": "credit" ou "debit" ou "account"
}}

Para CONSULTAS (ver saldo, analisar gastos, etc), use:
{{
  "type": "query"
}}

Se não entender, use:
{{
  "type": "clarification"
}}

Exemplos:
- "gastei 50 reais no ifood" → add_transaction (expense, Alimentação)
- "recebi meu salário de 3000" → add_transaction (income, Salário)
- "qual meu saldo?" → query
- "crie um orçamento de 500 para alimentação" → add_budget
"""

QUERY_PROMPT = """
Você é um assistente financeiro amigável e inteligente. Responda à pergunta usando os dados fornecidos.

Dados financeiros ({selected_month}/{selected_year}):
- Saldo atual: R$ {current_balance:.2f}
- Receitas: R$ {total_income:.2f}
- Despesas: R$ {total_expenses:.2f}
- Transações: {transaction_count}

Gastos por categoria:
{category_lines}

Bancos: {bank_names}
Orçamentos: {budget_count} ativos
Metas: {goal_count} definidas

Pergunta: "{message}"

Responda de forma natural, útil e amigável. Use emojis. Se o usuário quiser adicionar algo, ofereça ajuda específica.
"""


@dataclass
class ChatMessage:
    role: str
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    is_error: bool = False
    is_success: bool = False
    kind: Optional[str] = None


def _missing(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip()) or value == 0


def _number(value, label: str) -> float:
    if isinstance(value, str):
        value = value.replace("R$", "").strip()
        if "," in value:
            # pt-BR: "1.234,56"
            value = value.replace(".", "").replace(",", ".")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} inválido: {value!r}")
    if not math.isfinite(number):
        raise ValidationError(f"{label} inválido: {value!r}")
    return number


def _day(value) -> Optional[int]:
    if _missing(value):
        return None
    return int(_number(value, "Dia"))


def _parse_date(value) -> Optional[date]:
    if _missing(value):
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Data inválida: {value!r}")


def build_action_prompt(message: str) -> str:
    return ACTION_PROMPT.format(message=message)


def build_query_prompt(message: str, context: Dict[str, Any]) -> str:
    category_lines = "\n".join(
        f"- {category}: R$ {amount:.2f}" for category, amount in context["category_expenses"].items()
    ) or "Nenhum gasto"
    return QUERY_PROMPT.format(
        message=message,
        category_lines=category_lines,
        bank_names=", ".join(context["banks"]) or "Nenhum",
        **{k: v for k, v in context.items() if k not in ("category_expenses", "banks")},
    )


def validate_action(payload: Dict[str, Any]) -> str:
    """Return the action name, or raise ``ValidationError`` for missing fields."""
    action = payload.get("action")
    if action not in REQUIRED_FIELDS:
        raise ValidationError("Ação não reconhecida")
    if any(_missing(payload.get(name)) for name in REQUIRED_FIELDS[action]):
        raise ValidationError(INCOMPLETE_MESSAGES[action])
    return action


def resolve_transaction(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Fill a missing category or transaction type from the description keywords."""
    category = payload.get("category")
    txn_type = payload.get("transactionType")
    if _missing(category) or txn_type not in ("income", "expense"):
        guessed_category, guessed_type = smart_categorize(str(payload.get("description") or ""))
        if _missing(category):
            category = guessed_category
        if txn_type not in ("income", "expense"):
            txn_type = guessed_type
    return {
        "type": txn_type,
        "amount": _number(payload.get("amount"), "Valor"),
        "category": str(category),
        "description": str(payload.get("description")),
        "date": _parse_date(payload.get("date")),
        "payment_method": payload.get("paymentMethod") or "money",
        "bank_id": payload.get("bankId") or None,
    }


class FinanceAssistant:
    def __init__(self, store: FinanceStore, llm):
        self.store = store
        self.llm = llm
        self.history: List[ChatMessage] = [ChatMessage("assistant", GREETING)]

    def classify(self, message: str) -> Dict[str, Any]:
        result = self.llm.generate(build_action_prompt(message), as_json=True)
        if not isinstance(result, dict) or result.get("type") not in ("action", "query", "clarification"):
            logger.warning("Unexpected classification payload: %r", result)
            return clarification()
        return result

    def execute_action(self, payload: Dict[str, Any]) -> str:
        action = validate_action(payload)
        logger.info("Executing assistant action %s", action)

        if action == "add_transaction":
            data = resolve_transaction(payload)
            self.store.add_transaction(source="assistant", **data)
            label = "Receita" if data["type"] == "income" else "Despesa"
            return (
                "✅ Transação adicionada com sucesso!\n\n"
                f"💰 {label} de R$ {data['amount']:.2f}\n"
                f"📂 Categoria: {data['category']}\n"
                f"📝 Descrição: {data['description']}\n\n"
                "Você pode ver a transação na página de Transações! 🎉"
            )

        if action == "add_budget":
            amount = _number(payload["amount"], "Valor")
            threshold = payload.get("alertThreshold") or 80
            self.store.add_budget(
                category=str(payload["category"]),
                target_amount=amount,
                month=self.store.selected_month_key,
                alert_threshold=_number(threshold, "Alerta"),
            )
            return (
                "🎯 Orçamento criado com sucesso!\n\n"
                f"💰 R$ {amount:.2f} para {payload['category']}\n"
                f"📅 Mês: {self.store.selected_month}/{self.store.selected_year}\n"
                f"⚠️ Alerta em: {threshold}%"
            )

        if action == "add_goal":
            amount = _number(payload["amount"], "Valor")
            target_date = _parse_date(payload["targetDate"])
            category = payload.get("category") or DEFAULT_CATEGORY
            self.store.add_goal(
                title=str(payload["title"]),
                description=str(payload.get("description") or ""),
                target_amount=amount,
                current_amount=_number(payload.get("currentAmount") or 0, "Valor atual"),
                target_date=target_date,
                category=str(category),
                priority=payload.get("priority") or "medium",
            )
            return (
                f"🎯 Meta \"{payload['title']}\" criada com sucesso!\n\n"
                f"💰 Objetivo: R$ {amount:.2f}\n"
                f"📂 Categoria: {category}\n"
                f"📅 Data alvo: {format_date(target_date)}"
            )

        bank_type = payload["bankType"]
        self.store.add_bank(
            name=str(payload["name"]),
            type=bank_type,
            color=payload.get("color") or "#3B82F6",
            credit_limit=_number(payload["creditLimit"], "Limite") if payload.get("creditLimit") else None,
            closing_day=_day(payload.get("closingDay")),
            due_day=_day(payload.get("dueDay")),
        )
        return (
            f"🏦 Banco/Cartão \"{payload['name']}\" adicionado com sucesso!\n\n"
            f"📋 Tipo: {BANK_TYPE_LABELS.get(bank_type, bank_type)}"
        )

    def answer(self, message: str) -> str:
        prompt = build_query_prompt(message, self.store.financial_context())
        return self.llm.generate(prompt) or REPHRASE_MESSAGE

    def _reply(self, content: str, **flags) -> ChatMessage:
        reply = ChatMessage("assistant", content, **flags)
        self.history.append(reply)
        return reply

    def handle_message(self, message: str) -> ChatMessage:
        """Process one user message and return the assistant's reply."""
        message = (message or "").strip()
        if not message:
            return ChatMessage("assistant", REPHRASE_MESSAGE, is_error=True, kind="validation")
        self.history.append(ChatMessage("user", message))

        if not getattr(self.llm, "is_configured", False):
            logger.warning("Assistant called without an LLM API key")
            return self._reply(CONFIG_ERROR_MESSAGE, is_error=True, kind="config")

        try:
            result = self.classify(message)
            if result.get("type") == "action":
                return self._run_action(result)
            return self._reply(self.answer(message))
        except LLMConfigError:
            return self._reply(CONFIG_ERROR_MESSAGE, is_error=True, kind="config")
        except LLMAPIError as err:
            logger.error("LLM call failed: %s", err)
            return self._reply(SYSTEM_ERROR_MESSAGE, is_error=True, kind="system")
        except Exception:
            logger.exception("Unexpected failure handling assistant message")
            return self._reply(SYSTEM_ERROR_MESSAGE, is_error=True, kind="system")

    def _run_action(self, payload: Dict[str, Any]) -> ChatMessage:
        try:
            return self._reply(self.execute_action(payload), is_success=True, kind="action")
        except ValidationError as err:
            kind = "validation"
            detail = str(err)
        except FinanceError as err:
            logger.error("Assistant action failed: %s", err)
            kind = "system"
            detail = str(err)
        return self._reply(
            f"❌ Erro ao executar a ação: {detail}\n\n"
            "Tente reformular sua solicitação ou verifique se todos os dados necessários foram fornecidos.",
            is_error=True,
            kind=kind,
        )

    def reset(self) -> None:
        self.history = [ChatMessage("assistant", GREETING)]
