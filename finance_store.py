"""Session-scoped finance store.

One ``FinanceStore`` per signed-in session. It loads the user's rows
wholesale on sign-in, keeps them in memory for the UI and the assistant,
and funnels every mutation through the database so the in-memory lists
only change after the backend accepted the write. ``logout`` clears
everything.
"""

from __future__ import annotations

import calendar
import logging
import math
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Deque, Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError

from categorizer import DEFAULT_CATEGORY
from database import Bank, Budget, Goal, Investment, MonthlyBalance, Notification, SessionLocal, Transaction
from errors import BackendError, NotAuthenticatedError, ValidationError
from holdings import Holding, holding_from_row, validate_holding

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("income", "expense")
PAYMENT_METHODS = ("money", "creditCard", "debitCard", "pix")
BANK_TYPES = ("credit", "debit", "account")
GOAL_PRIORITIES = ("low", "medium", "high")
NOTIFICATION_TYPES = ("info", "warning", "success", "error")

# Portfolio value samples kept for the timeline chart
PORTFOLIO_HISTORY_LIMIT = 500

DEFAULT_BANKS = [
    {"name": "Nubank", "color": "#8A05BE", "type": "credit"},
    {"name": "Itaú", "color": "#EC7000", "type": "account"},
    {"name": "Bradesco", "color": "#CC092F", "type": "account"},
    {"name": "Santander", "color": "#EC0000", "type": "account"},
    {"name": "Banco do Brasil", "color": "#FCFC30", "type": "account"},
    {"name": "Caixa", "color": "#005CA9", "type": "account"},
]


def month_key(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


def _to_date(value) -> date:
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}")


def _positive_amount(value, label: str) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number (got {value!r})")
    if not (math.isfinite(amount) and amount > 0):
        raise ValidationError(f"{label} must be a positive finite number (got {value!r})")
    return amount


@dataclass(frozen=True)
class Invoice:
    bank_id: int
    month: int
    year: int
    total_amount: float
    due_date: date
    transactions: List[Transaction]


class FinanceStore:
    def __init__(self, session_factory=SessionLocal, today: Optional[date] = None):
        self._session_factory = session_factory
        self.user_id: Optional[int] = None
        current = today or date.today()
        self.selected_year = current.year
        self.selected_month = current.month
        self._reset()

    def _reset(self) -> None:
        self.transactions: List[Transaction] = []
        self.banks: List[Bank] = []
        self.budgets: List[Budget] = []
        self.goals: List[Goal] = []
        self.notifications: List[Notification] = []
        self.monthly_balances: List[MonthlyBalance] = []
        self.holdings: List[Holding] = []
        self.portfolio_history: Deque[Tuple[datetime, float]] = deque(maxlen=PORTFOLIO_HISTORY_LIMIT)

    # --- Session lifecycle ---

    def sign_in(self, user_id: int) -> None:
        if user_id != self.user_id:
            self._reset()
        self.user_id = user_id
        self.load_user_data()

    def logout(self) -> None:
        self.user_id = None
        self._reset()

    def set_selected_date(self, year: int, month: int) -> None:
        if not 1 <= month <= 12:
            raise ValidationError(f"Month must be 1-12 (got {month})")
        self.selected_year, self.selected_month = year, month

    @property
    def selected_month_key(self) -> str:
        return month_key(self.selected_year, self.selected_month)

    def _require_user(self) -> int:
        if self.user_id is None:
            raise NotAuthenticatedError("No user is signed in")
        return self.user_id

    @contextmanager
    def _session(self):
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as err:
            db.rollback()
            logger.error("Backend operation failed: %s", err)
            raise BackendError(str(err)) from err
        finally:
            db.close()

    def load_user_data(self) -> None:
        user_id = self._require_user()
        with self._session() as db:
            self.transactions = (
                db.query(Transaction)
                .filter(Transaction.user_id == user_id)
                .order_by(Transaction.date.desc(), Transaction.id.desc())
                .all()
            )
            self.banks = db.query(Bank).filter(Bank.user_id == user_id).order_by(Bank.id).all()
            self.budgets = db.query(Budget).filter(Budget.user_id == user_id).order_by(Budget.id).all()
            self.goals = db.query(Goal).filter(Goal.user_id == user_id).order_by(Goal.id).all()
            self.notifications = (
                db.query(Notification)
                .filter(Notification.user_id == user_id)
                .order_by(Notification.id.desc())
                .all()
            )
            self.monthly_balances = db.query(MonthlyBalance).filter(MonthlyBalance.user_id == user_id).all()
            investment_rows = (
                db.query(Investment).filter(Investment.user_id == user_id).order_by(Investment.id).all()
            )
            db.expunge_all()

        self.holdings = []
        for row in investment_rows:
            try:
                self.holdings.append(holding_from_row(row))
            except ValidationError as err:
                logger.warning("Ignoring stored investment %s: %s", row.id, err)

    # --- Generic row helpers ---

    def _insert(self, row):
        with self._session() as db:
            db.add(row)
            db.commit()
            db.refresh(row)
            db.expunge(row)
        return row

    def _update(self, model, row_id: int, changes: Dict[str, Any], allowed: tuple):
        user_id = self._require_user()
        unknown = set(changes) - set(allowed)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        with self._session() as db:
            row = db.query(model).filter(model.id == row_id, model.user_id == user_id).first()
            if row is None:
                raise ValidationError(f"{model.__name__} {row_id} not found")
            for key, value in changes.items():
                setattr(row, key, value)
            db.commit()
            db.refresh(row)
            db.expunge(row)
        return row

    def _delete(self, model, row_id: int) -> None:
        user_id = self._require_user()
        with self._session() as db:
            deleted = db.query(model).filter(model.id == row_id, model.user_id == user_id).delete()
            db.commit()
        if not deleted:
            raise ValidationError(f"{model.__name__} {row_id} not found")

    @staticmethod
    def _replace(rows: list, updated) -> list:
        return [updated if r.id == updated.id else r for r in rows]

    # --- Transactions ---

    def add_transaction(
        self,
        type: str,
        amount: float,
        category: Optional[str] = None,
        description: str = "",
        date=None,
        payment_method: str = "money",
        bank_id: Optional[int] = None,
        tags: Optional[List[str]] = None,
        source: str = "manual",
    ) -> Transaction:
        user_id = self._require_user()
        if type not in TRANSACTION_TYPES:
            raise ValidationError(f"Transaction type must be income or expense (got {type!r})")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method: {payment_method!r}")
        value = _positive_amount(amount, "Amount")
        txn_date = _to_date(date)

        row = Transaction(
            user_id=user_id,
            type=type,
            amount=value,
            category=category or DEFAULT_CATEGORY,
            description=description or "",
            date=txn_date,
            payment_method=payment_method,
            bank_id=bank_id,
            tags=list(tags or []),
            invoice_month=txn_date.month if payment_method == "creditCard" else None,
            invoice_year=txn_date.year if payment_method == "creditCard" else None,
            source=source,
        )
        label = "Receita" if type == "income" else "Despesa"
        try:
            row = self._insert(row)
        except BackendError:
            self.add_notification(
                "Erro ao Adicionar Transação",
                "Não foi possível adicionar a transação. Tente novamente.",
                "error",
            )
            raise

        self.transactions = [row] + self.transactions
        self.add_notification(
            "Transação Adicionada",
            f"{label} de R$ {value:.2f} adicionada com sucesso.",
            "success",
        )
        return row

    def update_transaction(self, transaction_id: int, **changes) -> Transaction:
        if "amount" in changes:
            changes["amount"] = _positive_amount(changes["amount"], "Amount")
        if "type" in changes and changes["type"] not in TRANSACTION_TYPES:
            raise ValidationError(f"Transaction type must be income or expense (got {changes['type']!r})")
        if "date" in changes:
            changes["date"] = _to_date(changes["date"])
        row = self._update(
            Transaction,
            transaction_id,
            changes,
            ("type", "amount", "category", "description", "date", "payment_method", "bank_id", "tags"),
        )
        self.transactions = self._replace(self.transactions, row)
        return row

    def delete_transaction(self, transaction_id: int) -> None:
        self._delete(Transaction, transaction_id)
        self.transactions = [t for t in self.transactions if t.id != transaction_id]

    def clear_all_transactions(self) -> None:
        user_id = self._require_user()
        with self._session() as db:
            db.query(Transaction).filter(Transaction.user_id == user_id).delete()
            db.commit()
        self.transactions = []

    # --- Budgets ---

    def add_budget(
        self,
        category: str,
        target_amount: float,
        month: Optional[str] = None,
        alert_threshold: float = 80,
    ) -> Budget:
        user_id = self._require_user()
        if not category:
            raise ValidationError("Budget needs a category")
        row = self._insert(
            Budget(
                user_id=user_id,
                category=category,
                target_amount=_positive_amount(target_amount, "Budget amount"),
                month=month or self.selected_month_key,
                alert_threshold=float(alert_threshold or 80),
            )
        )
        self.budgets = self.budgets + [row]
        return row

    def update_budget(self, budget_id: int, **changes) -> Budget:
        if "target_amount" in changes:
            changes["target_amount"] = _positive_amount(changes["target_amount"], "Budget amount")
        row = self._update(Budget, budget_id, changes, ("category", "target_amount", "month", "alert_threshold"))
        self.budgets = self._replace(self.budgets, row)
        return row

    def delete_budget(self, budget_id: int) -> None:
        self._delete(Budget, budget_id)
        self.budgets = [b for b in self.budgets if b.id != budget_id]

    # --- Banks ---

    def add_bank(
        self,
        name: str,
        type: str,
        color: str = "#3B82F6",
        credit_limit: Optional[float] = None,
        closing_day: Optional[int] = None,
        due_day: Optional[int] = None,
    ) -> Bank:
        user_id = self._require_user()
        if not name:
            raise ValidationError("Bank needs a name")
        if type not in BANK_TYPES:
            raise ValidationError(f"Bank type must be one of {', '.join(BANK_TYPES)} (got {type!r})")
        for label, day in (("Closing day", closing_day), ("Due day", due_day)):
            if day is not None and not 1 <= int(day) <= 31:
                raise ValidationError(f"{label} must be 1-31 (got {day})")
        row = self._insert(
            Bank(
                user_id=user_id,
                name=name,
                color=color or "#3B82F6",
                type=type,
                credit_limit=credit_limit,
                closing_day=closing_day,
                due_day=due_day,
            )
        )
        self.banks = self.banks + [row]
        return row

    def update_bank(self, bank_id: int, **changes) -> Bank:
        if "type" in changes and changes["type"] not in BANK_TYPES:
            raise ValidationError(f"Bank type must be one of {', '.join(BANK_TYPES)}")
        for label, key in (("Closing day", "closing_day"), ("Due day", "due_day")):
            day = changes.get(key)
            if day is not None and not 1 <= int(day) <= 31:
                raise ValidationError(f"{label} must be 1-31 (got {day})")
        row = self._update(
            Bank, bank_id, changes, ("name", "color", "type", "credit_limit", "closing_day", "due_day")
        )
        self.banks = self._replace(self.banks, row)
        return row

    def delete_bank(self, bank_id: int) -> None:
        self._delete(Bank, bank_id)
        self.banks = [b for b in self.banks if b.id != bank_id]

    def seed_default_banks(self) -> List[Bank]:
        """Give a new user the usual Brazilian banks; no-op when any bank exists."""
        if self.banks:
            return []
        return [self.add_bank(**bank) for bank in DEFAULT_BANKS]

    # --- Goals ---

    def add_goal(
        self,
        title: str,
        target_amount: float,
        target_date,
        category: str = DEFAULT_CATEGORY,
        description: str = "",
        current_amount: float = 0.0,
        priority: str = "medium",
    ) -> Goal:
        user_id = self._require_user()
        if not title:
            raise ValidationError("Goal needs a title")
        if priority not in GOAL_PRIORITIES:
            raise ValidationError(f"Priority must be one of {', '.join(GOAL_PRIORITIES)} (got {priority!r})")
        row = self._insert(
            Goal(
                user_id=user_id,
                title=title,
                description=description or "",
                target_amount=_positive_amount(target_amount, "Goal amount"),
                current_amount=float(current_amount or 0),
                target_date=_to_date(target_date),
                category=category or DEFAULT_CATEGORY,
                priority=priority,
                is_completed=False,
            )
        )
        self.goals = self.goals + [row]
        return row

    def update_goal(self, goal_id: int, **changes) -> Goal:
        if "target_date" in changes:
            changes["target_date"] = _to_date(changes["target_date"])
        row = self._update(
            Goal,
            goal_id,
            changes,
            ("title", "description", "target_amount", "current_amount", "target_date", "category", "priority", "is_completed"),
        )
        self.goals = self._replace(self.goals, row)
        return row

    def delete_goal(self, goal_id: int) -> None:
        self._delete(Goal, goal_id)
        self.goals = [g for g in self.goals if g.id != goal_id]

    def goal_progress(self, goal_id: int) -> float:
        goal = next((g for g in self.goals if g.id == goal_id), None)
        if goal is None or not goal.target_amount:
            return 0.0
        return min(goal.current_amount / goal.target_amount * 100, 100.0)

    # --- Monthly balances ---

    def set_monthly_balance(self, month: str, balance: float) -> MonthlyBalance:
        user_id = self._require_user()
        with self._session() as db:
            row = (
                db.query(MonthlyBalance)
                .filter(MonthlyBalance.user_id == user_id, MonthlyBalance.month == month)
                .first()
            )
            if row is None:
                row = MonthlyBalance(user_id=user_id, month=month)
                db.add(row)
            row.starting_balance = float(balance)
            db.commit()
            db.refresh(row)
            db.expunge(row)
        self.monthly_balances = [m for m in self.monthly_balances if m.month != month] + [row]
        return row

    # --- Notifications (best effort) ---

    def add_notification(self, title: str, message: str, type: str = "info") -> Optional[Notification]:
        """Write an in-app notification. Failures are logged, never raised."""
        if self.user_id is None:
            return None
        if type not in NOTIFICATION_TYPES:
            type = "info"
        try:
            row = self._insert(Notification(user_id=self.user_id, title=title, message=message, type=type, read=False))
        except BackendError as err:
            logger.warning("Could not store notification %r: %s", title, err)
            return None
        self.notifications = [row] + self.notifications
        return row

    def mark_notification_read(self, notification_id: int) -> None:
        try:
            row = self._update(Notification, notification_id, {"read": True}, ("read",))
        except (BackendError, ValidationError) as err:
            logger.warning("Could not mark notification %s as read: %s", notification_id, err)
            return
        self.notifications = self._replace(self.notifications, row)

    def clear_notifications(self) -> None:
        user_id = self._require_user()
        try:
            with self._session() as db:
                db.query(Notification).filter(Notification.user_id == user_id).delete()
                db.commit()
        except BackendError as err:
            logger.warning("Could not clear notifications: %s", err)
            return
        self.notifications = []

    def unread_notifications_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    # --- Investments ---

    def add_holding(self, holding: Holding) -> Holding:
        user_id = self._require_user()
        validate_holding(holding)
        row = self._insert(
            Investment(
                user_id=user_id,
                asset_id=holding.asset_id,
                symbol=holding.symbol,
                name=holding.name,
                amount=float(holding.amount),
                buy_price=float(holding.buy_price),
                category=holding.category.value,
                purchase_date=holding.purchase_date,
                notes=holding.notes,
            )
        )
        stored = holding_from_row(row)
        self.holdings = self.holdings + [stored]
        return stored

    def remove_holding(self, holding_id: int) -> None:
        self._delete(Investment, holding_id)
        self.holdings = [h for h in self.holdings if h.id != holding_id]

    def record_portfolio_value(self, value: float, at: Optional[datetime] = None) -> None:
        """Append a timeline sample; the oldest samples drop off past the limit."""
        if not math.isfinite(value):
            return
        self.portfolio_history.append((at or datetime.now(), float(value)))

    # --- Derived views ---

    def current_month_transactions(self) -> List[Transaction]:
        return [
            t for t in self.transactions
            if t.date.year == self.selected_year and t.date.month == self.selected_month
        ]

    def current_month_budgets(self) -> List[Budget]:
        key = self.selected_month_key
        return [b for b in self.budgets if b.month == key]

    def current_month_balance(self) -> float:
        key = self.selected_month_key
        starting = next((m.starting_balance for m in self.monthly_balances if m.month == key), 0.0) or 0.0
        current = self.current_month_transactions()
        income = sum(t.amount for t in current if t.type == "income")
        expenses = sum(t.amount for t in current if t.type == "expense")
        return starting + income - expenses

    def bank_invoice(self, bank_id: int, month: int, year: int) -> Invoice:
        """Credit card invoice for ``month``/``year``, due the following month."""
        bank = next((b for b in self.banks if b.id == bank_id), None)
        items = [
            t for t in self.transactions
            if t.bank_id == bank_id
            and t.payment_method == "creditCard"
            and t.invoice_month == month
            and t.invoice_year == year
        ]
        due_year, due_month = (year + 1, 1) if month == 12 else (year, month + 1)
        due_day = min((bank.due_day if bank and bank.due_day else 10), calendar.monthrange(due_year, due_month)[1])
        return Invoice(
            bank_id=bank_id,
            month=month,
            year=year,
            total_amount=sum(t.amount for t in items),
            due_date=date(due_year, due_month, due_day),
            transactions=items,
        )

    def financial_context(self) -> Dict[str, Any]:
        """Snapshot of the selected month fed to the assistant's query prompt."""
        current = self.current_month_transactions()
        category_expenses: Dict[str, float] = {}
        for t in current:
            if t.type == "expense":
                category_expenses[t.category] = category_expenses.get(t.category, 0.0) + t.amount
        return {
            "current_balance": self.current_month_balance(),
            "total_income": sum(t.amount for t in current if t.type == "income"),
            "total_expenses": sum(t.amount for t in current if t.type == "expense"),
            "transaction_count": len(current),
            "category_expenses": category_expenses,
            "banks": [b.name for b in self.banks],
            "budget_count": len(self.budgets),
            "goal_count": len(self.goals),
            "selected_month": self.selected_month,
            "selected_year": self.selected_year,
        }

    def transactions_frame(self) -> pd.DataFrame:
        """Transactions as a signed-amount frame (income positive, expense negative)."""
        columns = ["ID", "Date", "Type", "Description", "Category", "Amount", "PaymentMethod", "BankId", "Tags"]
        if not self.transactions:
            return pd.DataFrame(columns=columns)
        df = pd.DataFrame(
            [
                {
                    "ID": t.id,
                    "Date": t.date,
                    "Type": t.type,
                    "Description": t.description,
                    "Category": t.category or DEFAULT_CATEGORY,
                    "Amount": t.amount if t.type == "income" else -t.amount,
                    "PaymentMethod": t.payment_method,
                    "BankId": t.bank_id,
                    "Tags": t.tags or [],
                }
                for t in self.transactions
            ],
            columns=columns,
        )
        df["Date"] = pd.to_datetime(df["Date"])
        return df
