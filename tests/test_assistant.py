from __future__ import annotations

import datetime as dt

import pytest

from assistant import (
    CONFIG_ERROR_MESSAGE,
    GREETING,
    FinanceAssistant,
    build_query_prompt,
    resolve_transaction,
    validate_action,
)
from conftest import FakeLLM
from errors import LLMAPIError, ValidationError


def test_ifood_message_becomes_food_expense(store):
    llm = FakeLLM({"type": "action", "action": "add_transaction", "amount": 50, "description": "ifood"})
    assistant = FinanceAssistant(store, llm)

    reply = assistant.handle_message("gastei 50 reais no ifood")

    assert reply.is_success and not reply.is_error
    assert reply.kind == "action"
    [txn] = store.transactions
    assert txn.type == "expense"
    assert txn.category == "Alimentação"
    assert txn.amount == 50
    assert txn.source == "assistant"
    assert "R$ 50.00" in reply.content
    assert '"gastei 50 reais no ifood"' in llm.prompts[0][0]
    assert llm.prompts[0][1] is True


def test_llm_category_is_kept_when_present():
    data = resolve_transaction(
        {"amount": "1.234,50", "description": "salário", "category": "Outros", "transactionType": "income"}
    )

    assert data["category"] == "Outros"
    assert data["type"] == "income"
    assert data["amount"] == 1234.5


def test_unknown_description_defaults_to_other_expense():
    data = resolve_transaction({"amount": 10, "description": "xyz123"})

    assert (data["category"], data["type"]) == ("Outros", "expense")


@pytest.mark.parametrize(
    "payload",
    [
        {"action": "add_transaction", "amount": 10},
        {"action": "add_transaction", "description": "café"},
        {"action": "add_budget", "category": "Lazer"},
        {"action": "add_goal", "title": "Viagem", "amount": 1000},
        {"action": "add_bank", "name": "Inter"},
        {"action": "transfer_money", "amount": 10},
    ],
)
def test_missing_required_fields_are_rejected(payload):
    with pytest.raises(ValidationError):
        validate_action(payload)


def test_incomplete_action_is_a_validation_error_reply(store):
    llm = FakeLLM({"type": "action", "action": "add_transaction", "amount": 50})
    assistant = FinanceAssistant(store, llm)

    reply = assistant.handle_message("gastei 50")

    assert reply.is_error
    assert reply.kind == "validation"
    assert "Dados incompletos" in reply.content
    assert store.transactions == []
    assert len(llm.prompts) == 1


def test_budget_goal_and_bank_actions(store):
    llm = FakeLLM(
        {"type": "action", "action": "add_budget", "category": "Lazer", "amount": 300},
        {"type": "action", "action": "add_goal", "title": "Viagem", "amount": 5000, "targetDate": "2025-12-31"},
        {"type": "action", "action": "add_bank", "name": "Inter", "bankType": "credit"},
    )
    assistant = FinanceAssistant(store, llm)

    budget_reply = assistant.handle_message("orçamento de 300 para lazer")
    goal_reply = assistant.handle_message("meta de 5000 para viagem")
    bank_reply = assistant.handle_message("adicione o cartão Inter")

    assert budget_reply.is_success and goal_reply.is_success and bank_reply.is_success
    [budget] = store.budgets
    assert (budget.month, budget.alert_threshold) == ("2024-05", 80)
    [goal] = store.goals
    assert goal.priority == "medium"
    assert goal.target_date == dt.date(2025, 12, 31)
    assert "31/12/2025" in goal_reply.content
    assert store.banks[-1].name == "Inter"
    assert "Cartão de Crédito" in bank_reply.content


def test_query_makes_second_call_with_context(store):
    store.add_transaction("expense", 80, "Alimentação", "mercado", date=dt.date(2024, 5, 3))
    llm = FakeLLM({"type": "query"}, "Seu saldo é negativo 😬")
    assistant = FinanceAssistant(store, llm)

    reply = assistant.handle_message("qual meu saldo?")

    assert reply.content == "Seu saldo é negativo 😬"
    assert not reply.is_error
    context_prompt, as_json = llm.prompts[1]
    assert as_json is False
    assert "- Alimentação: R$ 80.00" in context_prompt
    assert "Despesas: R$ 80.00" in context_prompt
    assert len(store.transactions) == 1


def test_malformed_classification_falls_back_to_query_path(store):
    llm = FakeLLM(["not", "a", "dict"], "Pode reformular?")
    assistant = FinanceAssistant(store, llm)

    reply = assistant.handle_message("asdf")

    assert reply.content == "Pode reformular?"
    assert len(llm.prompts) == 2


def test_missing_api_key_returns_config_error_without_calls(store):
    llm = FakeLLM(configured=False)
    assistant = FinanceAssistant(store, llm)

    reply = assistant.handle_message("gastei 50 reais no ifood")

    assert reply.is_error
    assert reply.kind == "config"
    assert reply.content == CONFIG_ERROR_MESSAGE
    assert llm.prompts == []


def test_api_error_is_a_system_error_reply(store):
    assistant = FinanceAssistant(store, FakeLLM(LLMAPIError("Gemini API error: HTTP 500")))

    reply = assistant.handle_message("oi")

    assert reply.is_error
    assert reply.kind == "system"


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "action", "action": "add_bank", "name": "Inter", "bankType": "credit", "closingDay": float("nan")},
        {"type": "action", "action": "add_bank", "name": "Inter", "bankType": "credit", "dueDay": float("inf")},
        {"type": "action", "action": "add_transaction", "amount": float("inf"), "description": "ifood"},
    ],
)
def test_non_finite_numbers_are_validation_replies(store, payload):
    assistant = FinanceAssistant(store, FakeLLM(payload))

    reply = assistant.handle_message("adicione")

    assert reply.is_error
    assert reply.kind == "validation"
    assert store.transactions == []
    assert store.banks == []


def test_unexpected_failure_is_a_system_reply(store):
    assistant = FinanceAssistant(store, FakeLLM(RuntimeError("boom")))

    reply = assistant.handle_message("oi")

    assert reply.is_error
    assert reply.kind == "system"
    assert assistant.history[-1] is reply


def test_history_keeps_greeting_and_turns(store):
    assistant = FinanceAssistant(store, FakeLLM({"type": "clarification"}, "Claro!"))

    assistant.handle_message("ajuda")

    assert assistant.history[0].content == GREETING
    assert [m.role for m in assistant.history] == ["assistant", "user", "assistant"]

    assistant.reset()
    assert len(assistant.history) == 1


def test_query_prompt_without_expenses():
    context = {
        "current_balance": 0.0,
        "total_income": 0.0,
        "total_expenses": 0.0,
        "transaction_count": 0,
        "category_expenses": {},
        "banks": [],
        "budget_count": 0,
        "goal_count": 0,
        "selected_month": 5,
        "selected_year": 2024,
    }

    prompt = build_query_prompt("oi", context)

    assert "Nenhum gasto" in prompt
    assert "Bancos: Nenhum" in prompt
    assert "(5/2024)" in prompt
