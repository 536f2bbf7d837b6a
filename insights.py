from typing import List, Optional

import pandas as pd

from formatting import format_brl


def _with_month(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df["Month"] = pd.to_datetime(df["Date"]).dt.strftime("%Y-%m")
    return df


def compute_highlights(df: pd.DataFrame, month: Optional[str] = None):
    """Summarize one month (default: the latest with data) for quick highlights."""

    if df.empty:
        return {}

    df = _with_month(df)
    month = month or df["Month"].max()
    month_df = df[df["Month"] == month]

    income = month_df[month_df["Amount"] > 0]["Amount"].sum()
    expenses = month_df[month_df["Amount"] < 0]["Amount"].sum()

    expense_rows = month_df[month_df["Amount"] < 0]
    top_category = None
    top_category_spend = 0
    if not expense_rows.empty:
        by_cat = expense_rows.groupby("Category")["Amount"].sum().abs().sort_values(ascending=False)
        top_category = by_cat.index[0]
        top_category_spend = by_cat.iloc[0]

    return {
        "month": month,
        "income": float(income),
        "spend": float(abs(expenses)),
        "net": float(income + expenses),
        "top_category": top_category,
        "top_category_spend": float(top_category_spend),
        "avg_ticket": float(abs(expense_rows["Amount"].mean())) if not expense_rows.empty else 0.0,
    }


def budget_status(spent: float, target: float, threshold: float = 80) -> str:
    """``exceeded`` at 100%+, ``warning`` from the alert threshold, ``good`` below."""
    pct = spent / target * 100 if target else 0
    if pct >= 100:
        return "exceeded"
    if pct >= (threshold or 80):
        return "warning"
    return "good"


def track_budget_progress(df: pd.DataFrame, budgets) -> List[dict]:
    """Compute spend versus each budget's target within the budget's own month."""

    if not budgets:
        return []

    spend = pd.Series(dtype=float)
    if not df.empty:
        df = _with_month(df)
        spend = df[df["Amount"] < 0].groupby(["Month", "Category"])["Amount"].sum().abs()

    progress = []
    for budget in budgets:
        limit = budget.target_amount or 0
        if limit <= 0:
            continue
        spent = float(spend.get((budget.month, budget.category), 0))
        remaining = limit - spent
        progress.append(
            {
                "id": budget.id,
                "category": budget.category,
                "month": budget.month,
                "limit": float(limit),
                "spent": spent,
                "remaining": float(remaining),
                "pct": spent / limit,
                "alert_threshold": float(budget.alert_threshold or 80),
                "status": budget_status(spent, limit, budget.alert_threshold),
            }
        )
    return progress


def summarize_budget_watch(progress: List[dict]) -> List[str]:
    """Return human-readable budget alerts for exceeded and at-risk categories."""

    alerts = []
    for entry in progress or []:
        if entry["status"] == "exceeded":
            alerts.append(
                f"🔴 **{entry['category']}** is over budget by {format_brl(abs(entry['remaining']))} "
                f"(spent {format_brl(entry['spent'])} of {format_brl(entry['limit'])})."
            )
        elif entry["status"] == "warning":
            alerts.append(
                f"🟠 **{entry['category']}** is {entry['pct'] * 100:.0f}% of its {format_brl(entry['limit'])} limit "
                f"(alert at {entry['alert_threshold']:.0f}%)."
            )
    return alerts


def monthly_summary(df: pd.DataFrame) -> pd.DataFrame:
    """Income, expenses and net per month, oldest first."""

    if df.empty:
        return pd.DataFrame(columns=["Month", "Income", "Expenses", "Net"])

    df = _with_month(df)
    income = df[df["Amount"] > 0].groupby("Month")["Amount"].sum()
    expenses = df[df["Amount"] < 0].groupby("Month")["Amount"].sum().abs()
    summary = pd.DataFrame({"Income": income, "Expenses": expenses}).fillna(0.0)
    summary["Net"] = summary["Income"] - summary["Expenses"]
    return summary.sort_index().reset_index().rename(columns={"index": "Month"})
