from datetime import datetime
from sqlalchemy import create_engine, Column, Integer, String, Float, Boolean, Date, DateTime, ForeignKey, JSON
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from config import Settings

settings = Settings.load()

# Database Setup
# Default to local SQLite, but allow override for a hosted Postgres
DB_URL = settings.database_url


def make_engine(url: str):
    if "sqlite" not in url:
        return create_engine(url)
    # In-memory SQLite lives in a single connection; share it across sessions
    extra = {"poolclass": StaticPool} if url in ("sqlite://", "sqlite:///:memory:") else {}
    return create_engine(url, connect_args={"check_same_thread": False}, **extra)


def make_session_factory(url: str):
    """Build an engine + session factory pair for ``url`` and create the tables."""
    bind = make_engine(url)
    Base.metadata.create_all(bind=bind)
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = make_engine(DB_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# --- Models ---
# Every row below users is owned by exactly one user and is only ever
# read or written through a query filtered on user_id.

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    password_hash = Column(String) # Store bcrypt hash, not plain text
    created_at = Column(DateTime, default=datetime.utcnow)

class Bank(Base):
    __tablename__ = "banks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    name = Column(String)
    color = Column(String, default="#3B82F6")
    type = Column(String) # 'credit', 'debit' or 'account'
    credit_limit = Column(Float, nullable=True)
    closing_day = Column(Integer, nullable=True) # Day of month the invoice closes
    due_day = Column(Integer, nullable=True)     # Day of month the invoice is due

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    type = Column(String) # 'income' or 'expense'
    date = Column(Date)
    description = Column(String)
    amount = Column(Float) # Always positive; direction comes from type
    category = Column(String)
    payment_method = Column(String, default="money") # 'money', 'creditCard', 'debitCard', 'pix'
    bank_id = Column(Integer, ForeignKey("banks.id"), nullable=True)
    tags = Column(JSON, default=list)

    # Credit card purchases land on the invoice of their month (1-12)
    invoice_month = Column(Integer, nullable=True)
    invoice_year = Column(Integer, nullable=True)

    # Metadata
    source = Column(String, default="manual") # 'manual', 'assistant'
    created_at = Column(DateTime, default=datetime.utcnow)

class Budget(Base):
    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    category = Column(String)
    target_amount = Column(Float)
    month = Column(String) # YYYY-MM
    alert_threshold = Column(Float, default=80.0) # Percentage that triggers an alert

class Goal(Base):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    title = Column(String)
    description = Column(String, default="")
    target_amount = Column(Float)
    current_amount = Column(Float, default=0.0)
    target_date = Column(Date)
    category = Column(String)
    priority = Column(String, default="medium") # 'low', 'medium', 'high'
    is_completed = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    title = Column(String)
    message = Column(String)
    type = Column(String, default="info") # 'info', 'warning', 'success', 'error'
    read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

class MonthlyBalance(Base):
    __tablename__ = "monthly_balances"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    month = Column(String) # YYYY-MM
    starting_balance = Column(Float, default=0.0)

class Investment(Base):
    __tablename__ = "investments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    asset_id = Column(String, index=True) # Price API slug or a custom id
    symbol = Column(String)
    name = Column(String)
    amount = Column(Float)    # Money invested in this purchase
    buy_price = Column(Float) # Unit price at purchase
    category = Column(String)
    purchase_date = Column(Date)
    notes = Column(String, nullable=True)

# --- Init DB ---
def init_db():
    Base.metadata.create_all(bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
