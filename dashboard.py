# dashboard.py - plotly figures for the transactions dashboard and the investments page

import streamlit as st
import plotly.express as px
import plotly.graph_objects as go
import pandas as pd

from analytics import asset_allocation, category_breakdown, heatmap_cells
from formatting import format_brl, format_percentage

def _prep(df):
    """
    Prepares the transactions dataframe for dashboarding.
    """
    if df.empty:
        return df

    df = df.copy()
    df['Date'] = pd.to_datetime(df['Date'])
    df['Month'] = df['Date'].dt.to_period('M').astype(str)

    # Ensure Amount is numeric
    df['Amount'] = pd.to_numeric(df['Amount'], errors='coerce').fillna(0)
    df["Category"] = df["Category"].fillna("Outros").replace("", "Outros")
    return df

def _kpis(df: pd.DataFrame, month: str, starting_balance: float = 0.0):
    """
    Displays the month's KPIs: income, spend, balance and savings rate.
    """
    df_curr = df[df["Month"] == month] if not df.empty else df
    income = df_curr[df_curr['Amount'] > 0]['Amount'].sum() if not df_curr.empty else 0.0
    spend = abs(df_curr[df_curr['Amount'] < 0]['Amount'].sum()) if not df_curr.empty else 0.0
    balance = starting_balance + income - spend
    savings_rate = ((income - spend) / income * 100) if income > 0 else 0.0

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("💰 Receitas", format_brl(income))
    col2.metric("💸 Despesas", format_brl(spend), delta=f"-{format_brl(spend)}", delta_color="inverse")
    col3.metric("🏦 Saldo do mês", format_brl(balance))
    col4.metric("📉 Savings Rate", f"{savings_rate:.1f}%", delta="Target: 20%")

    st.caption("Share of income spent")
    st.progress(min(1.0, spend / income) if income > 0 else 0)


def income_vs_expense_monthly(df):
    """
    Bar chart of Income vs Expenses per month.
    """
    monthly = df.groupby('Month')['Amount'].agg(
        Income=lambda x: x[x > 0].sum(),
        Expense=lambda x: abs(x[x < 0].sum())
    ).reset_index()

    fig = go.Figure()
    fig.add_trace(go.Bar(x=monthly['Month'], y=monthly['Income'], name='Receitas', marker_color='#10B981'))
    fig.add_trace(go.Bar(x=monthly['Month'], y=monthly['Expense'], name='Despesas', marker_color='#EF4444'))

    fig.update_layout(barmode='group', title="Receitas vs Despesas", height=400)
    return fig

def cat_spend(df):
    """
    Donut chart of spending by category.
    """
    spend_df = df[df['Amount'] < 0].copy()
    spend_df['Amount'] = abs(spend_df['Amount'])

    by_cat = spend_df.groupby('Category')['Amount'].sum().reset_index()

    fig = px.pie(by_cat, values='Amount', names='Category', hole=0.4, title="Gastos por Categoria")
    fig.update_traces(textposition='inside', textinfo='percent+label')
    return fig

def balance_trend(df):
    """
    Area chart of the cumulative cash balance over time.
    """
    daily = df.groupby('Date')['Amount'].sum().cumsum().reset_index()
    daily.rename(columns={'Amount': 'Saldo'}, inplace=True)

    fig = px.area(daily, x='Date', y='Saldo', title="Evolução do Saldo")
    fig.update_layout(height=350)
    return fig


# --- Investments ---

def _rgba(hex_color: str, opacity: float) -> str:
    r, g, b = (int(hex_color[i:i + 2], 16) for i in (1, 3, 5))
    return f"rgba({r},{g},{b},{opacity})"

def asset_allocation_pie(positions):
    """
    Donut of portfolio value per asset, one palette colour per slice.
    """
    slices = asset_allocation(positions)
    fig = go.Figure(
        go.Pie(
            labels=[s["symbol"] or s["name"] for s in slices],
            values=[s["value"] for s in slices],
            marker=dict(colors=[s["color"] for s in slices]),
            hole=0.4,
            customdata=[[s["name"], format_percentage(s["profit_percentage"])] for s in slices],
            hovertemplate="%{customdata[0]}<br>%{value:,.2f} (%{percent})<br>P/L %{customdata[1]}<extra></extra>",
        )
    )
    fig.update_layout(title="Allocation by Asset", height=400)
    return fig

def category_allocation_pie(positions):
    """
    Donut of portfolio value per investment category, fixed category colours.
    """
    slices = category_breakdown(positions)
    fig = go.Figure(
        go.Pie(
            labels=[s.category.value for s in slices],
            values=[s.value for s in slices],
            marker=dict(colors=[s.color for s in slices]),
            hole=0.4,
        )
    )
    fig.update_layout(title="Allocation by Category", height=400)
    return fig

def performance_heatmap(positions, sort_by: str = "performance"):
    """
    Treemap sized by position value, coloured by profit band.
    """
    cells = heatmap_cells(positions, sort_by)
    fig = go.Figure(
        go.Treemap(
            ids=[f"{c['category']}/{c['asset_id']}" for c in cells],
            labels=[f"{c['symbol'] or c['name']}<br>{format_percentage(c['profit_percentage'])}" for c in cells],
            parents=["" for _ in cells],
            values=[max(c["current_value"], 0.0) for c in cells],
            marker=dict(colors=[_rgba(c["color"], c["opacity"]) for c in cells]),
            textinfo="label",
        )
    )
    fig.update_layout(title="Performance Heatmap", height=450, margin=dict(t=50, l=10, r=10, b=10))
    return fig

def portfolio_timeline(points):
    """
    Line chart of portfolio value over time from ``(timestamp, value)`` pairs.
    """
    frame = pd.DataFrame(list(points), columns=["Date", "Value"]).sort_values("Date")
    fig = px.line(frame, x="Date", y="Value", markers=True, title="Portfolio Value")
    fig.update_layout(height=350)
    return fig


def price_history_chart(history, name: str):
    """
    Daily USD price line from a ``get_history`` payload (``[[ms, price], ...]``).
    """
    frame = pd.DataFrame(history.get("prices") or [], columns=["Timestamp", "Price"])
    frame["Date"] = pd.to_datetime(frame["Timestamp"], unit="ms")
    fig = px.line(frame, x="Date", y="Price", title=f"{name} price (USD)")
    fig.update_layout(height=350)
    return fig
