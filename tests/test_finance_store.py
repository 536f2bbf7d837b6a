from __future__ import annotations

import datetime as dt
from collections import deque

import pytest

from auth import register_user
from conftest import make_holding
from database import Notification, Transaction
from errors import BackendError, NotAuthenticatedError, ValidationError
from finance_store import DEFAULT_BANKS, PORTFOLIO_HISTORY_LIMIT, FinanceStore


def test_add_transaction_prepends_and_notifies(store):
    first = store.add_transaction("expense", 20, "Lazer", "cinema", date=dt.date(2024, 5, 1))
    second = store.add_transaction("income", 1000, "Salário", "salário", date=dt.date(2024, 5, 5))

    assert [t.id for t in store.transactions] == [second.id, first.id]
    assert store.notifications[0].title == "Transação Adicionada"
    assert store.notifications[0].type == "success"
    assert store.unread_notifications_count() == 2


def test_transaction_without_category_is_other(store):
    txn = store.add_transaction("expense", 5, description="???", date="2024-05-02")

    assert txn.category == "Outros"
    assert txn.date == dt.date(2024, 5, 2)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"type": "transfer", "amount": 10},
        {"type": "expense", "amount": 0},
        {"type": "expense", "amount": -3},
        {"type": "expense", "amount": "abc"},
        {"type": "expense", "amount": float("inf")},
        {"type": "expense", "amount": float("nan")},
        {"type": "expense", "amount": 10, "payment_method": "cheque"},
        {"type": "expense", "amount": 10, "date": "not-a-date"},
    ],
)
def test_invalid_transactions_are_rejected(store, kwargs):
    with pytest.raises(ValidationError):
        store.add_transaction(**kwargs)
    assert store.transactions == []


def test_credit_card_purchase_lands_on_invoice(store):
    bank = store.add_bank("Nubank", "credit", due_day=31)
    store.add_transaction("expense", 100, "Lazer", "show", date=dt.date(2024, 1, 20),
                          payment_method="creditCard", bank_id=bank.id)
    store.add_transaction("expense", 50, "Alimentação", "mercado", date=dt.date(2024, 1, 22),
                          payment_method="creditCard", bank_id=bank.id)
    store.add_transaction("expense", 70, "Alimentação", "feira", date=dt.date(2024, 1, 23),
                          payment_method="pix", bank_id=bank.id)

    invoice = store.bank_invoice(bank.id, 1, 2024)

    assert invoice.total_amount == 150
    assert len(invoice.transactions) == 2
    # due day 31 is clamped to the end of February
    assert invoice.due_date == dt.date(2024, 2, 29)


def test_december_invoice_is_due_in_january(store):
    bank = store.add_bank("Itaú", "credit")

    invoice = store.bank_invoice(bank.id, 12, 2024)

    assert invoice.due_date == dt.date(2025, 1, 10)
    assert invoice.total_amount == 0


def test_update_and_delete_transaction(store):
    txn = store.add_transaction("expense", 20, "Lazer", "cinema", date=dt.date(2024, 5, 1))

    updated = store.update_transaction(txn.id, amount=35, description="cinema 3D")
    assert store.transactions[0].amount == 35
    assert updated.description == "cinema 3D"

    with pytest.raises(ValidationError):
        store.update_transaction(txn.id, user_id=99)

    store.delete_transaction(txn.id)
    assert store.transactions == []
    with pytest.raises(ValidationError):
        store.delete_transaction(txn.id)


def test_clear_all_transactions(store):
    store.add_transaction("expense", 20, "Lazer", "cinema")
    store.add_transaction("expense", 30, "Lazer", "bar")

    store.clear_all_transactions()
    store.load_user_data()

    assert store.transactions == []


def test_budget_defaults_to_selected_month(store):
    store.set_selected_date(2024, 2)

    budget = store.add_budget("Alimentação", 500)

    assert budget.month == "2024-02"
    assert store.current_month_budgets() == [budget]
    store.set_selected_date(2024, 3)
    assert store.current_month_budgets() == []

    store.update_budget(budget.id, target_amount=600)
    assert store.budgets[0].target_amount == 600
    store.delete_budget(budget.id)
    assert store.budgets == []


def test_invalid_month_selection(store):
    with pytest.raises(ValidationError):
        store.set_selected_date(2024, 13)


def test_bank_validation(store):
    with pytest.raises(ValidationError):
        store.add_bank("Inter", "savings")
    with pytest.raises(ValidationError):
        store.add_bank("Inter", "credit", closing_day=40)
    with pytest.raises(ValidationError):
        store.update_bank(12345, name="Ghost")


def test_update_bank_card_settings(store):
    bank = store.add_bank("Nubank", "credit", credit_limit=1000, due_day=5)

    store.update_bank(bank.id, credit_limit=2500, closing_day=28, due_day=None)

    [updated] = store.banks
    assert updated.credit_limit == 2500
    assert updated.closing_day == 28
    assert updated.due_day is None
    with pytest.raises(ValidationError):
        store.update_bank(bank.id, due_day=32)
    assert store.banks[0].due_day is None


def test_seed_default_banks_only_once(store):
    created = store.seed_default_banks()

    assert [b.name for b in created] == [b["name"] for b in DEFAULT_BANKS]
    assert store.seed_default_banks() == []
    assert len(store.banks) == 6


def test_goal_progress_is_capped(store):
    goal = store.add_goal("Viagem", 1000, dt.date(2025, 1, 1), current_amount=250)
    assert store.goal_progress(goal.id) == 25

    store.update_goal(goal.id, current_amount=1500)
    assert store.goal_progress(goal.id) == 100
    assert store.goal_progress(987) == 0

    with pytest.raises(ValidationError):
        store.add_goal("Casa", 1000, dt.date(2030, 1, 1), priority="urgent")


def test_month_balance_includes_starting_balance(store):
    store.set_monthly_balance("2024-05", 1000)
    store.set_monthly_balance("2024-05", 500)
    store.add_transaction("income", 300, "Salário", "freela", date=dt.date(2024, 5, 2))
    store.add_transaction("expense", 100, "Lazer", "bar", date=dt.date(2024, 5, 3))
    store.add_transaction("expense", 999, "Lazer", "viagem", date=dt.date(2024, 4, 3))

    assert store.current_month_balance() == 700
    assert len(store.monthly_balances) == 1

    context = store.financial_context()
    assert context["transaction_count"] == 2
    assert context["category_expenses"] == {"Lazer": 100}


def test_add_holding_rejects_invalid_holdings(store):
    with pytest.raises(ValidationError):
        store.add_holding(make_holding(amount=0))
    with pytest.raises(ValidationError):
        store.add_holding(make_holding(buy_price=-1))
    with pytest.raises(ValidationError):
        store.add_holding(make_holding(amount=float("inf")))

    stored = store.add_holding(make_holding("bitcoin", amount=100, buy_price=50_000))

    assert stored.id is not None
    assert store.holdings == [stored]
    store.remove_holding(stored.id)
    assert store.holdings == []


def test_holdings_survive_reload(store):
    store.add_holding(make_holding("ethereum", amount=200, buy_price=2000))

    store.load_user_data()

    [holding] = store.holdings
    assert holding.asset_id == "ethereum"
    assert holding.quantity == pytest.approx(0.1)


def test_logout_clears_every_collection(store):
    store.add_transaction("expense", 20, "Lazer", "cinema")
    store.add_bank("Inter", "account")
    store.add_budget("Lazer", 100)
    store.add_goal("Viagem", 1000, dt.date(2025, 1, 1))
    store.set_monthly_balance("2024-05", 10)
    store.add_holding(make_holding())
    store.record_portfolio_value(1000.0)

    store.logout()

    assert store.user_id is None
    for name in ("transactions", "banks", "budgets", "goals", "notifications", "monthly_balances", "holdings"):
        assert getattr(store, name) == []
    assert len(store.portfolio_history) == 0
    with pytest.raises(NotAuthenticatedError):
        store.add_transaction("expense", 10)


def test_rows_are_scoped_to_their_user(session_factory, store):
    store.add_transaction("expense", 20, "Lazer", "cinema")
    other_user = register_user("bia@example.com", "secret123", session_factory=session_factory)
    other = FinanceStore(session_factory, today=dt.date(2024, 5, 15))
    other.sign_in(other_user.id)

    assert other.transactions == []
    with pytest.raises(ValidationError):
        other.delete_transaction(store.transactions[0].id)


def test_failed_insert_notifies_and_raises(store, monkeypatch):
    original = store._insert

    def flaky_insert(row):
        if isinstance(row, Transaction):
            raise BackendError("database is locked")
        return original(row)

    monkeypatch.setattr(store, "_insert", flaky_insert)

    with pytest.raises(BackendError):
        store.add_transaction("expense", 20, "Lazer", "cinema")

    assert store.transactions == []
    assert store.notifications[0].type == "error"


def test_notification_failures_are_swallowed(store, monkeypatch):
    original = store._insert

    def no_notifications(row):
        if isinstance(row, Notification):
            raise BackendError("disk full")
        return original(row)

    monkeypatch.setattr(store, "_insert", no_notifications)

    txn = store.add_transaction("expense", 20, "Lazer", "cinema")

    assert store.transactions == [txn]
    assert store.notifications == []


def test_mark_notification_read(store):
    store.add_notification("Oi", "mensagem")
    note = store.notifications[0]

    store.mark_notification_read(note.id)
    store.mark_notification_read(4242)

    assert store.unread_notifications_count() == 0
    store.clear_notifications()
    assert store.notifications == []


def test_transactions_frame_signs_amounts(store):
    store.add_transaction("income", 300, "Salário", "freela", date=dt.date(2024, 5, 2))
    store.add_transaction("expense", 100, "Lazer", "bar", date=dt.date(2024, 5, 3))

    df = store.transactions_frame()

    assert sorted(df["Amount"].tolist()) == [-100, 300]
    assert str(df["Date"].dtype).startswith("datetime64")


def test_portfolio_history_is_capped(store, monkeypatch):
    monkeypatch.setattr(store, "portfolio_history", deque(maxlen=3))
    start = dt.datetime(2024, 5, 1)

    for day in range(5):
        store.record_portfolio_value(100.0 + day, at=start + dt.timedelta(days=day))
    store.record_portfolio_value(float("nan"))

    assert [value for _, value in store.portfolio_history] == [102.0, 103.0, 104.0]


def test_portfolio_history_default_limit(store):
    for i in range(PORTFOLIO_HISTORY_LIMIT + 10):
        store.record_portfolio_value(float(i))

    assert len(store.portfolio_history) == PORTFOLIO_HISTORY_LIMIT
    assert store.portfolio_history[0][1] == 10.0


def test_switching_user_drops_previous_samples(session_factory, store):
    store.record_portfolio_value(5000.0)
    other_user = register_user("caio@example.com", "secret123", session_factory=session_factory)

    store.sign_in(other_user.id)

    assert len(store.portfolio_history) == 0
