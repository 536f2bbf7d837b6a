import streamlit as st
import pandas as pd
import time
from datetime import date, datetime

from analytics import (
    filter_positions,
    portfolio_metrics,
    positions_frame,
    risk_flags,
    sort_positions,
    timeline_stats,
)
from app_logging import setup_logging
from assistant import FinanceAssistant
from auth import authenticate, register_user
from categorizer import TRANSACTION_CATEGORIES, smart_categorize
from config import Settings
from consolidation import consolidate
from dashboard import (
    _kpis,
    _prep,
    asset_allocation_pie,
    balance_trend,
    cat_spend,
    category_allocation_pie,
    income_vs_expense_monthly,
    performance_heatmap,
    portfolio_timeline,
    price_history_chart,
)
from database import init_db, SessionLocal
from errors import BackendError, FinanceError, RateLimitError, ValidationError
from exports import PAYMENT_METHOD_LABELS as PAYMENT_LABELS, export_transactions, transactions_to_csv
from finance_store import BANK_TYPES, GOAL_PRIORITIES, PAYMENT_METHODS, FinanceStore
from formatting import format_brl, format_currency, format_date, format_large_number, format_percentage
from gemini import GeminiClient
from holdings import Holding, InvestmentCategory
from insights import compute_highlights, monthly_summary, summarize_budget_watch, track_budget_progress
from market_data import POPULAR_CRYPTOS, CoinGeckoClient, PricePoller
from storage import list_files, load_file

# --- Configuration ---
settings = Settings.load()
setup_logging(settings.log_level)
st.set_page_config(page_title="Personal Finance Tracker", layout="wide", page_icon="💰")

# --- Database ---
init_db()

SORT_LABELS = {"profit": "Profit", "profitPercentage": "Profit %", "value": "Value", "name": "Name"}


def get_store() -> FinanceStore:
    if "store" not in st.session_state:
        st.session_state.store = FinanceStore(SessionLocal)
    return st.session_state.store


def get_assistant() -> FinanceAssistant:
    if "assistant" not in st.session_state:
        st.session_state.assistant = FinanceAssistant(get_store(), GeminiClient())
    return st.session_state.assistant


def get_poller() -> PricePoller:
    if "poller" not in st.session_state:
        st.session_state.poller = PricePoller(CoinGeckoClient(), interval_seconds=settings.price_poll_seconds)
    return st.session_state.poller


# --- Authentication ---
def check_login():
    if st.session_state.get("authenticated", False):
        return True

    st.title("💰 Personal Finance Tracker")
    login_tab, register_tab = st.tabs(["Sign In", "Create Account"])

    with login_tab:
        with st.form("login"):
            email = st.text_input("Email", placeholder="Enter your email")
            password = st.text_input("Password", type="password", placeholder="Enter your password")
            if st.form_submit_button("Sign In", type="primary", use_container_width=True):
                user = authenticate(email, password)
                if user:
                    get_store().sign_in(user.id)
                    st.session_state["authenticated"] = True
                    st.session_state["user_name"] = user.name
                    st.success("✅ Login successful!")
                    time.sleep(0.5)
                    st.rerun()
                else:
                    st.error("❌ Invalid credentials")

    with register_tab:
        with st.form("register"):
            name = st.text_input("Name")
            email = st.text_input("Email", key="register_email")
            password = st.text_input("Password", type="password", key="register_password")
            if st.form_submit_button("Create Account", use_container_width=True):
                try:
                    user = register_user(email, password, name=name)
                    store = get_store()
                    store.sign_in(user.id)
                    store.seed_default_banks()
                    st.session_state["authenticated"] = True
                    st.session_state["user_name"] = user.name
                    st.rerun()
                except FinanceError as e:
                    st.error(str(e))

    return False


def logout():
    get_store().logout()
    for key in ("authenticated", "user_name", "assistant", "poller"):
        st.session_state.pop(key, None)
    st.rerun()


if not check_login():
    st.stop()

store = get_store()

# Sidebar
with st.sidebar:
    st.header(f"👋 {st.session_state.get('user_name', '')}")

    today = date.today()
    col_m, col_y = st.columns(2)
    month = col_m.selectbox("Month", list(range(1, 13)), index=store.selected_month - 1)
    year = col_y.number_input("Year", min_value=2000, max_value=2100, value=store.selected_year, step=1)
    store.set_selected_date(int(year), int(month))

    st.divider()
    unread = store.unread_notifications_count()
    with st.expander(f"🔔 Notifications ({unread})"):
        for n in store.notifications[:10]:
            marker = "" if n.read else "🆕 "
            st.markdown(f"{marker}**{n.title}**  \n{n.message}")
            if not n.read and st.button("Mark as read", key=f"read_{n.id}"):
                store.mark_notification_read(n.id)
                st.rerun()
        if store.notifications and st.button("Clear all"):
            store.clear_notifications()
            st.rerun()

    st.divider()
    st.header("Export")
    reports_folder = f"transactions/user_{store.user_id}"
    current_txns = store.current_month_transactions()
    st.download_button(
        "⬇️ CSV (this month)",
        data=transactions_to_csv(current_txns),
        file_name=f"transacoes_{store.selected_month_key}.csv",
        mime="text/csv",
        use_container_width=True,
    )
    if st.button("📄 Save PDF report", use_container_width=True):
        income = sum(t.amount for t in current_txns if t.type == "income")
        expenses = sum(t.amount for t in current_txns if t.type == "expense")
        try:
            location = export_transactions(
                current_txns,
                fmt="pdf",
                title="Relatório de Transações",
                subtitle=f"{store.selected_month:02d}/{store.selected_year}",
                total_income=income,
                total_expenses=expenses,
                folder=reports_folder,
            )
            st.success(f"Saved to {location}")
        except (FinanceError, OSError) as e:
            st.error(f"Export failed: {e}")

    with st.expander("🗂️ Saved reports"):
        try:
            saved_reports = list_files(folder=reports_folder)
        except FinanceError as e:
            saved_reports = []
            st.error(f"Could not list reports: {e}")
        if not saved_reports:
            st.caption("No saved reports yet.")
        for report in saved_reports:
            try:
                content = load_file(report, folder=reports_folder)
            except FinanceError as e:
                st.error(f"Could not load {report}: {e}")
                continue
            if content is not None:
                st.download_button(report, data=content, file_name=report, key=f"report_{report}", use_container_width=True)

    st.divider()
    if st.button("🚪 Logout", use_container_width=True):
        logout()

st.title("💰 Personal Finance Tracker")

df = store.transactions_frame()
df_prep = _prep(df) if not df.empty else pd.DataFrame()
budget_progress = track_budget_progress(df, store.current_month_budgets())

tabs = st.tabs(["📊 Dashboard", "💳 Transactions", "🏦 Banks & Cards", "🎯 Budgets", "🏁 Goals", "📈 Investments", "💬 Assistant"])

with tabs[0]:
    starting = next((m.starting_balance for m in store.monthly_balances if m.month == store.selected_month_key), 0.0)
    _kpis(df_prep, store.selected_month_key, starting_balance=starting or 0.0)

    with st.expander("Starting balance for this month"):
        with st.form("monthly_balance"):
            value = st.number_input("Starting balance (R$)", value=float(starting or 0.0), step=100.0)
            if st.form_submit_button("Save"):
                store.set_monthly_balance(store.selected_month_key, value)
                st.rerun()

    if df_prep.empty:
        st.info("No transactions yet. Add one in the Transactions tab or ask the assistant.")
    else:
        highlights = compute_highlights(df, store.selected_month_key)
        if highlights.get("top_category"):
            st.caption(
                f"Top category this month: **{highlights['top_category']}** "
                f"({format_brl(highlights['top_category_spend'])}), average ticket {format_brl(highlights['avg_ticket'])}"
            )
        col1, col2 = st.columns(2)
        col1.plotly_chart(income_vs_expense_monthly(df_prep), use_container_width=True)
        month_df = df_prep[df_prep["Month"] == store.selected_month_key]
        if not month_df[month_df["Amount"] < 0].empty:
            col2.plotly_chart(cat_spend(month_df), use_container_width=True)
        st.plotly_chart(balance_trend(df_prep), use_container_width=True)
        with st.expander("Monthly summary"):
            st.dataframe(monthly_summary(df), use_container_width=True, hide_index=True)

    alerts = summarize_budget_watch(budget_progress)
    if alerts:
        st.subheader("🎯 Budget Watch")
        for alert in alerts:
            st.markdown(alert)

with tabs[1]:
    st.subheader("Add Transaction")
    bank_names = {b.id: b.name for b in store.banks}
    with st.form("add_transaction", clear_on_submit=True):
        c1, c2, c3 = st.columns(3)
        description = c1.text_input("Description")
        amount = c2.number_input("Amount (R$)", min_value=0.0, step=10.0)
        txn_date = c3.date_input("Date", value=today)
        c4, c5, c6, c7 = st.columns(4)
        txn_type = c4.selectbox("Type", ["auto", "expense", "income"])
        category = c5.selectbox("Category", ["auto"] + TRANSACTION_CATEGORIES)
        payment = c6.selectbox("Payment", PAYMENT_METHODS, format_func=PAYMENT_LABELS.get)
        bank_id = c7.selectbox("Bank", [None] + list(bank_names), format_func=lambda i: bank_names.get(i, "—"))
        if st.form_submit_button("Add Transaction", type="primary"):
            guessed_category, guessed_type = smart_categorize(description)
            try:
                store.add_transaction(
                    type=guessed_type if txn_type == "auto" else txn_type,
                    amount=amount,
                    category=guessed_category if category == "auto" else category,
                    description=description,
                    date=txn_date,
                    payment_method=payment,
                    bank_id=bank_id,
                )
                st.rerun()
            except ValidationError as e:
                st.warning(str(e))
            except BackendError as e:
                st.error(f"Could not save: {e}")

    st.subheader("Transaction Log")
    current = store.current_month_transactions()
    if not current:
        st.info("No transactions for this month.")
    for t in current:
        cols = st.columns([2, 4, 2, 2, 2, 1])
        cols[0].write(format_date(t.date))
        cols[1].write(t.description or "—")
        cols[2].write(t.category)
        cols[3].write(PAYMENT_LABELS.get(t.payment_method, t.payment_method))
        sign = "+" if t.type == "income" else "-"
        cols[4].write(f"{sign} {format_brl(t.amount)}")
        if cols[5].button("🗑️", key=f"del_txn_{t.id}"):
            store.delete_transaction(t.id)
            st.rerun()

    if store.transactions:
        with st.expander("Danger zone"):
            if st.button("Delete all transactions", type="secondary"):
                store.clear_all_transactions()
                st.rerun()

with tabs[2]:
    st.header("🏦 Banks & Cards")
    with st.form("add_bank", clear_on_submit=True):
        c1, c2, c3 = st.columns(3)
        name = c1.text_input("Name")
        bank_type = c2.selectbox("Type", BANK_TYPES)
        color = c3.color_picker("Color", "#3B82F6")
        c4, c5, c6 = st.columns(3)
        credit_limit = c4.number_input("Credit limit", min_value=0.0, step=100.0)
        closing_day = c5.number_input("Closing day", min_value=0, max_value=31, step=1)
        due_day = c6.number_input("Due day", min_value=0, max_value=31, step=1)
        if st.form_submit_button("Add Bank"):
            try:
                store.add_bank(
                    name=name,
                    type=bank_type,
                    color=color,
                    credit_limit=credit_limit or None,
                    closing_day=int(closing_day) or None,
                    due_day=int(due_day) or None,
                )
                st.rerun()
            except FinanceError as e:
                st.warning(str(e))

    for bank in store.banks:
        with st.container(border=True):
            c1, c2 = st.columns([5, 1])
            c1.markdown(f"<span style='color:{bank.color}'>●</span> **{bank.name}** ({bank.type})", unsafe_allow_html=True)
            if c2.button("Remove", key=f"del_bank_{bank.id}"):
                store.delete_bank(bank.id)
                st.rerun()
            if bank.type == "credit":
                invoice = store.bank_invoice(bank.id, store.selected_month, store.selected_year)
                st.caption(
                    f"Invoice {store.selected_month:02d}/{store.selected_year}: {format_brl(invoice.total_amount)} "
                    f"· due {format_date(invoice.due_date)} · limit {format_brl(bank.credit_limit or 0)}"
                )
                with st.expander("Edit card"):
                    with st.form(f"edit_bank_{bank.id}"):
                        e1, e2, e3 = st.columns(3)
                        new_limit = e1.number_input("Credit limit", value=float(bank.credit_limit or 0), min_value=0.0, step=100.0)
                        new_closing = e2.number_input("Closing day", value=int(bank.closing_day or 0), min_value=0, max_value=31, step=1)
                        new_due = e3.number_input("Due day", value=int(bank.due_day or 0), min_value=0, max_value=31, step=1)
                        if st.form_submit_button("Update"):
                            try:
                                store.update_bank(
                                    bank.id,
                                    credit_limit=new_limit or None,
                                    closing_day=int(new_closing) or None,
                                    due_day=int(new_due) or None,
                                )
                                st.rerun()
                            except FinanceError as e:
                                st.warning(str(e))

with tabs[3]:
    st.header("🎯 Budgets")
    with st.form("add_budget", clear_on_submit=True):
        c1, c2, c3 = st.columns(3)
        budget_category = c1.selectbox("Category", TRANSACTION_CATEGORIES)
        target = c2.number_input("Monthly limit (R$)", min_value=0.0, step=50.0)
        threshold = c3.slider("Alert at (%)", 10, 100, 80)
        if st.form_submit_button("Save Budget"):
            try:
                store.add_budget(budget_category, target, alert_threshold=threshold)
                st.rerun()
            except FinanceError as e:
                st.warning(str(e))

    for entry in budget_progress:
        icon = {"exceeded": "🔴", "warning": "🟠", "good": "🟢"}[entry["status"]]
        c1, c2 = st.columns([5, 1])
        c1.markdown(f"{icon} **{entry['category']}**: {format_brl(entry['spent'])} of {format_brl(entry['limit'])}")
        c1.progress(min(entry["pct"], 1.0))
        new_limit = c2.number_input("Limit", value=float(entry["limit"]), min_value=1.0, step=50.0, key=f"budget_limit_{entry['id']}")
        if new_limit != entry["limit"]:
            try:
                store.update_budget(entry["id"], target_amount=new_limit)
                st.rerun()
            except FinanceError as e:
                st.warning(str(e))
        if c2.button("Remove", key=f"del_budget_{entry['id']}"):
            store.delete_budget(entry["id"])
            st.rerun()

with tabs[4]:
    st.header("🏁 Goals")
    with st.form("add_goal", clear_on_submit=True):
        c1, c2, c3 = st.columns(3)
        title = c1.text_input("Title")
        goal_target = c2.number_input("Target (R$)", min_value=0.0, step=100.0)
        target_date = c3.date_input("Target date", value=date(today.year + 1, today.month, min(today.day, 28)))
        c4, c5, c6 = st.columns(3)
        goal_category = c4.selectbox("Category", TRANSACTION_CATEGORIES, key="goal_category")
        priority = c5.selectbox("Priority", GOAL_PRIORITIES, index=1)
        saved = c6.number_input("Already saved (R$)", min_value=0.0, step=100.0)
        if st.form_submit_button("Create Goal"):
            try:
                store.add_goal(title, goal_target, target_date, category=goal_category, priority=priority, current_amount=saved)
                st.rerun()
            except FinanceError as e:
                st.warning(str(e))

    for goal in store.goals:
        progress = store.goal_progress(goal.id)
        c1, c2, c3 = st.columns([4, 2, 1])
        c1.markdown(f"**{goal.title}** ({goal.priority}) · by {format_date(goal.target_date)}")
        c1.progress(progress / 100)
        new_amount = c2.number_input("Saved", value=float(goal.current_amount or 0), key=f"goal_amt_{goal.id}", step=50.0)
        if new_amount != (goal.current_amount or 0):
            store.update_goal(goal.id, current_amount=new_amount, is_completed=new_amount >= goal.target_amount)
            st.rerun()
        if c3.button("Remove", key=f"del_goal_{goal.id}"):
            store.delete_goal(goal.id)
            st.rerun()

with tabs[5]:
    st.header("📈 Investments")
    poller = get_poller()
    poller.coin_ids = sorted({h.asset_id for h in store.holdings} | {c["id"] for c in POPULAR_CRYPTOS})

    col_r, col_s = st.columns([1, 4])
    if col_r.button("🔄 Refresh prices"):
        poller.last_fetched_at = None
    with st.spinner("Loading prices..."):
        fetched = poller.refresh_if_due()
    if poller.last_error == "rate_limited":
        col_s.warning("Price API rate limit reached. Try again shortly.")
    elif poller.last_error:
        col_s.error("Could not load live prices; showing buy prices instead.")

    with st.expander("➕ Add holding"):
        asset_options = list(POPULAR_CRYPTOS)
        query = st.text_input("Search CoinGecko", placeholder="e.g. pepe")
        if query.strip():
            try:
                found = poller.client.search(query.strip())
            except RateLimitError:
                found = []
                st.warning("Price API rate limit reached. Try again shortly.")
            known = {c["id"] for c in asset_options}
            asset_options = [c for c in found if c["id"] not in known] + asset_options
            if not found:
                st.caption("No matches.")
        with st.form("add_holding", clear_on_submit=True):
            c1, c2, c3 = st.columns(3)
            coin = c1.selectbox("Asset", [None] + asset_options, format_func=lambda c: "Custom" if c is None else f"{c['name']} ({c['symbol']})")
            custom_id = c2.text_input("Custom asset id")
            custom_name = c3.text_input("Custom name")
            c4, c5, c6, c7 = st.columns(4)
            holding_category = c4.selectbox("Category", list(InvestmentCategory), format_func=lambda c: c.value)
            invested = c5.number_input("Invested (US$)", min_value=0.0, step=100.0)
            buy_price = c6.number_input("Buy price (US$)", min_value=0.0, step=1.0, format="%.6f")
            purchase_date = c7.date_input("Purchase date", value=today)
            notes = st.text_input("Notes")
            if st.form_submit_button("Add Holding"):
                asset_id = coin["id"] if coin else custom_id.strip().lower()
                try:
                    store.add_holding(
                        Holding(
                            asset_id=asset_id,
                            symbol=coin["symbol"] if coin else custom_id.strip().upper(),
                            name=coin["name"] if coin else (custom_name or custom_id),
                            amount=invested,
                            buy_price=buy_price,
                            category=InvestmentCategory.CRYPTO if coin else holding_category,
                            purchase_date=purchase_date,
                            notes=notes or None,
                        )
                    )
                    st.rerun()
                except FinanceError as e:
                    st.warning(str(e))

    with st.expander("🔥 Trending"):
        try:
            trending = poller.client.get_trending()
        except RateLimitError:
            trending = []
            st.warning("Price API rate limit reached. Try again shortly.")
        for item in trending:
            st.markdown(f"**{item['name']}** ({item['symbol']}) {format_percentage(item['price_change_percentage_24h'])}")
        if not trending:
            st.caption("Nothing trending right now.")

    positions = consolidate(store.holdings, poller.prices())
    if not positions:
        st.info("No holdings yet.")
    else:
        c1, c2 = st.columns(2)
        category_filter = c1.selectbox("Category", ["all"] + [c.value for c in InvestmentCategory])
        sort_by = c2.selectbox("Sort by", list(SORT_LABELS), format_func=SORT_LABELS.get)
        visible = sort_positions(filter_positions(positions, category_filter), sort_by)

        metrics = portfolio_metrics(visible)
        m1, m2, m3, m4 = st.columns(4)
        m1.metric("Invested", format_currency(metrics.total_invested))
        m2.metric("Current value", format_currency(metrics.total_current_value))
        m3.metric("Profit", format_currency(metrics.total_profit), delta=format_percentage(metrics.total_profit_percentage))
        m4.metric("Winners / Losers", f"{metrics.profitable_count} / {metrics.unprofitable_count}")
        if metrics.best_performer:
            st.caption(
                f"Best: {metrics.best_performer.name} ({format_percentage(metrics.best_performer.profit_percentage)}) · "
                f"Worst: {metrics.worst_performer.name} ({format_percentage(metrics.worst_performer.profit_percentage)})"
            )

        for flag in risk_flags(visible):
            st.warning(f"⚠️ {flag.message}")

        table = positions_frame(visible)
        if table["StalePrice"].any():
            st.caption("Positions marked stale are priced at their latest buy price.")
        st.dataframe(table, use_container_width=True, hide_index=True)

        c1, c2 = st.columns(2)
        c1.plotly_chart(asset_allocation_pie(visible), use_container_width=True)
        c2.plotly_chart(category_allocation_pie(visible), use_container_width=True)
        heat_sort = st.radio("Heatmap order", ["performance", "value", "name"], horizontal=True)
        st.plotly_chart(performance_heatmap(visible, heat_sort), use_container_width=True)

        # One timeline sample per price fetch, for the whole portfolio
        if fetched or not store.portfolio_history:
            store.record_portfolio_value(portfolio_metrics(positions).total_current_value)
        history = list(store.portfolio_history)
        period = st.radio("Period", ["7d", "30d", "90d", "1y", "all"], index=4, horizontal=True)
        stats = timeline_stats(history, period, now=datetime.now())
        if stats and stats["points"] > 1:
            st.plotly_chart(portfolio_timeline(history), use_container_width=True)
            st.caption(
                f"Change {format_currency(stats['change'])} ({format_percentage(stats['change_percentage'])}) · "
                f"max {format_large_number(stats['max'])} · min {format_large_number(stats['min'])}"
            )

        st.subheader("Price history")
        h1, h2 = st.columns([3, 2])
        history_options = {p.asset_id: p.name for p in positions}
        history_options.update({c["id"]: c["name"] for c in POPULAR_CRYPTOS if c["id"] not in history_options})
        history_id = h1.selectbox("Asset", list(history_options), format_func=history_options.get, key="history_asset")
        history_days = h2.radio("Days", [7, 30, 90, 365], index=1, horizontal=True)
        try:
            price_history = poller.client.get_history(history_id, history_days)
        except RateLimitError:
            price_history = {"prices": []}
            st.warning("Price API rate limit reached. Try again shortly.")
        if price_history["prices"]:
            st.plotly_chart(price_history_chart(price_history, history_options[history_id]), use_container_width=True)
        else:
            st.caption("No price history available.")

        for p in visible:
            for h in [h for h in store.holdings if h.asset_id == p.asset_id and h.category == p.category]:
                cols = st.columns([3, 2, 2, 1])
                cols[0].write(f"{h.name} · {format_date(h.purchase_date)}")
                cols[1].write(format_currency(h.amount))
                cols[2].write(format_currency(h.buy_price, max_decimals=6))
                if cols[3].button("🗑️", key=f"del_holding_{h.id}"):
                    store.remove_holding(h.id)
                    st.rerun()

with tabs[6]:
    st.header("💬 Assistant")
    assistant = get_assistant()
    if not assistant.llm.is_configured:
        st.info("Set GEMINI_API_KEY in .env to enable the assistant.")

    for message in assistant.history:
        with st.chat_message(message.role):
            if message.is_error:
                st.error(message.content)
            elif message.is_success:
                st.success(message.content)
            else:
                st.markdown(message.content)

    prompt = st.chat_input("Ex.: gastei 50 reais no ifood")
    if prompt:
        with st.spinner("Thinking..."):
            assistant.handle_message(prompt)
        st.rerun()
