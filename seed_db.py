import logging
from datetime import date

from app_logging import setup_logging
from auth import register_user
from config import Settings
from database import init_db, SessionLocal, User
from finance_store import FinanceStore
from holdings import Holding, InvestmentCategory

logger = logging.getLogger(__name__)

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "demo123"


def seed_users(session_factory=SessionLocal):
    init_db()
    db = session_factory()
    try:
        # Check if users exist
        if db.query(User).first():
            logger.info("Users already exist. Skipping seed.")
            return None
    finally:
        db.close()

    demo = register_user(DEMO_EMAIL, DEMO_PASSWORD, name="Demo", session_factory=session_factory)

    store = FinanceStore(session_factory)
    store.sign_in(demo.id)
    store.seed_default_banks()
    today = date.today()
    store.add_transaction("income", 5000, "Salário", "Salário mensal", date=today.replace(day=1))
    store.add_transaction("expense", 1500, "Moradia", "Aluguel", date=today.replace(day=5))
    store.add_transaction("expense", 89.9, "Alimentação", "iFood", date=today, payment_method="creditCard",
                          bank_id=store.banks[0].id)
    store.add_budget("Alimentação", 800)
    store.add_holding(
        Holding(
            asset_id="bitcoin",
            symbol="BTC",
            name="Bitcoin",
            amount=1000,
            buy_price=50000,
            category=InvestmentCategory.CRYPTO,
            purchase_date=today,
        )
    )
    logger.info("Database initialized with demo user %s", DEMO_EMAIL)
    return demo


if __name__ == "__main__":
    setup_logging(Settings.load().log_level)
    seed_users()
