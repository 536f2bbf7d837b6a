"""CSV and PDF export of transaction lists."""

from __future__ import annotations

import html
import logging
from datetime import date, datetime
from typing import Iterable, Optional

import pandas as pd

from errors import ValidationError
from formatting import format_brl, format_date, format_number
from storage import save_file

logger = logging.getLogger(__name__)

PAYMENT_METHOD_LABELS = {
    "creditCard": "Cartão de Crédito",
    "debitCard": "Cartão de Débito",
    "pix": "PIX",
    "money": "Dinheiro/Outros",
}
TYPE_LABELS = {"income": "Receita", "expense": "Despesa"}

CSV_COLUMNS = ["Data", "Tipo", "Descrição", "Categoria", "Valor", "Pagamento", "Tags"]

REPORT_CSS = """
body { font-family: Helvetica, Arial, sans-serif; font-size: 10pt; color: #111827; }
h1 { color: #3B82F6; text-align: center; font-size: 22pt; margin-bottom: 4px; }
h2 { color: #6B7280; text-align: center; font-size: 13pt; font-weight: normal; margin-top: 0; }
.meta { color: #6B7280; margin: 2px 0; }
.bank { color: #3B82F6; margin: 2px 0; }
.income { color: #10B981; }
.expense { color: #EF4444; }
table { width: 100%; border-collapse: collapse; margin-top: 12px; }
th { background: #3B82F6; color: #FFFFFF; font-size: 10pt; padding: 4px; text-align: left; }
td { font-size: 9pt; padding: 4px; }
tr:nth-child(even) td { background: #F9FAFB; }
td.num { text-align: right; }
.footer { color: #6B7280; font-size: 8pt; margin-top: 16px; }
"""


def payment_label(method: Optional[str]) -> str:
    return PAYMENT_METHOD_LABELS.get(method or "money", "Dinheiro/Outros")


def transactions_frame(transactions: Iterable) -> pd.DataFrame:
    """Flat, locale-formatted rows ready for CSV."""
    rows = [
        {
            "Data": format_date(t.date),
            "Tipo": TYPE_LABELS.get(t.type, t.type),
            "Descrição": t.description or "",
            "Categoria": t.category or "",
            "Valor": format_number(t.amount),
            "Pagamento": payment_label(t.payment_method),
            "Tags": ";".join(t.tags or []),
        }
        for t in transactions
    ]
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


def transactions_to_csv(transactions: Iterable) -> bytes:
    # pt-BR spreadsheets expect ';' separators since ',' is the decimal mark
    return transactions_frame(transactions).to_csv(index=False, sep=";").encode("utf-8-sig")


def build_report_html(
    transactions: Iterable,
    title: str,
    subtitle: Optional[str] = None,
    bank=None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    total_income: Optional[float] = None,
    total_expenses: Optional[float] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    esc = html.escape
    parts = [f"<h1>{esc(title)}</h1>"]
    if subtitle:
        parts.append(f"<h2>{esc(subtitle)}</h2>")

    if bank is not None:
        parts.append(f'<p class="bank">Banco: {esc(bank.name)}</p>')
        if bank.type == "credit":
            parts.append(f'<p class="bank">Limite: {format_brl(bank.credit_limit or 0)}</p>')
            parts.append(f'<p class="bank">Vencimento: Dia {bank.due_day or 10}</p>')

    if start_date and end_date:
        parts.append(f'<p class="meta">Período: {format_date(start_date)} a {format_date(end_date)}</p>')

    if total_income is not None and total_expenses is not None:
        balance = total_income - total_expenses
        parts.append(f'<p class="income">Total Receitas: {format_brl(total_income)}</p>')
        parts.append(f'<p class="expense">Total Despesas: {format_brl(total_expenses)}</p>')
        parts.append(
            f'<p class="{"income" if balance >= 0 else "expense"}">Saldo: {format_brl(balance)}</p>'
        )

    rows = []
    for t in transactions:
        income = format_brl(t.amount) if t.type == "income" else ""
        expense = format_brl(t.amount) if t.type == "expense" else ""
        rows.append(
            "<tr>"
            f"<td>{format_date(t.date)}</td>"
            f"<td>{esc(t.description or '')}</td>"
            f"<td>{esc(t.category or '')}</td>"
            f"<td>{payment_label(t.payment_method)}</td>"
            f'<td class="num">{income}</td>'
            f'<td class="num">{expense}</td>'
            "</tr>"
        )
    parts.append(
        "<table><thead><tr>"
        "<th>Data</th><th>Descrição</th><th>Categoria</th><th>Pagamento</th><th>Receita</th><th>Despesa</th>"
        f"</tr></thead><tbody>{''.join(rows)}</tbody></table>"
    )

    generated_at = generated_at or datetime.now()
    parts.append(f'<p class="footer">Gerado em {generated_at.strftime("%d/%m/%Y %H:%M:%S")}</p>')
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<style>{REPORT_CSS}</style></head><body>{''.join(parts)}</body></html>"
    )


def transactions_to_pdf(transactions: Iterable, title: str, **options) -> bytes:
    """Render the HTML report to PDF bytes with WeasyPrint."""
    # weasyprint needs the cairo/pango system libraries at import time
    from weasyprint import HTML

    return HTML(string=build_report_html(transactions, title, **options)).write_pdf()


def export_transactions(transactions, fmt: str = "csv", title: str = "Relatório de Transações",
                        file_name: Optional[str] = None, folder: str = "transactions", **options) -> str:
    """Export and persist through ``storage``; returns the saved location."""
    transactions = list(transactions)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    if fmt == "csv":
        data = transactions_to_csv(transactions)
    elif fmt == "pdf":
        data = transactions_to_pdf(transactions, title, **options)
    else:
        raise ValidationError(f"Unsupported export format: {fmt}")
    name = file_name or f"transacoes_{stamp}.{fmt}"
    logger.info("Exporting %d transactions as %s", len(transactions), fmt)
    return save_file(name, data, folder=folder)
