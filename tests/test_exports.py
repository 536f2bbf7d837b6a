from __future__ import annotations

import datetime as dt
from types import SimpleNamespace

import pytest

import exports
from errors import ValidationError
from exports import build_report_html, export_transactions, transactions_to_csv
from storage import list_files, load_file, save_file


def txn(type="expense", amount=1234.5, description="Mercado", category="Alimentação",
        payment_method="creditCard", date=dt.date(2024, 5, 3), tags=None):
    return SimpleNamespace(
        type=type,
        amount=amount,
        description=description,
        category=category,
        payment_method=payment_method,
        date=date,
        tags=tags or [],
    )


def test_csv_uses_brazilian_formats():
    data = transactions_to_csv([txn(), txn("income", 3000, "Salário", "Salário", "pix", tags=["maio"])])

    assert data.startswith(b"\xef\xbb\xbf")
    lines = data.decode("utf-8-sig").splitlines()
    assert lines[0] == "Data;Tipo;Descrição;Categoria;Valor;Pagamento;Tags"
    assert lines[1] == "03/05/2024;Despesa;Mercado;Alimentação;1.234,50;Cartão de Crédito;"
    assert lines[2] == "03/05/2024;Receita;Salário;Salário;3.000,00;PIX;maio"


def test_empty_csv_has_header_only():
    assert transactions_to_csv([]).decode("utf-8-sig").strip() == "Data;Tipo;Descrição;Categoria;Valor;Pagamento;Tags"


def test_report_html_escapes_and_totals():
    bank = SimpleNamespace(name="Nu <bank>", type="credit", credit_limit=5000, due_day=None)

    page = build_report_html(
        [txn(description="<script>alert(1)</script>", payment_method=None)],
        "Fatura",
        subtitle="Maio/2024",
        bank=bank,
        start_date=dt.date(2024, 5, 1),
        end_date=dt.date(2024, 5, 31),
        total_income=1000,
        total_expenses=1234.5,
        generated_at=dt.datetime(2024, 6, 1, 12, 0, 0),
    )

    assert "<script>" not in page
    assert "&lt;script&gt;" in page
    assert "Banco: Nu &lt;bank&gt;" in page
    assert "Limite: R$ 5.000,00" in page
    assert "Vencimento: Dia 10" in page
    assert "Período: 01/05/2024 a 31/05/2024" in page
    assert '<p class="expense">Saldo: -R$ 234,50</p>' in page
    assert "Dinheiro/Outros" in page
    assert "Gerado em 01/06/2024 12:00:00" in page


def test_save_file_locally(tmp_path):
    location = save_file("a.csv", b"x;y", bucket="", local_root=tmp_path)

    assert location == str(tmp_path / "transactions" / "a.csv")
    assert load_file("a.csv", bucket="", local_root=tmp_path) == b"x;y"
    assert load_file("missing.csv", bucket="", local_root=tmp_path) is None
    assert list_files(bucket="", local_root=tmp_path) == ["a.csv"]


def test_export_transactions_saves_csv(monkeypatch):
    saved = {}

    def fake_save(name, data, folder):
        saved[name] = data
        return f"exports/{folder}/{name}"

    monkeypatch.setattr(exports, "save_file", fake_save)

    location = export_transactions([txn()], "csv", file_name="maio.csv", folder="users/7")

    assert location == "exports/users/7/maio.csv"
    assert saved["maio.csv"].startswith(b"\xef\xbb\xbf")


def test_unknown_export_format():
    with pytest.raises(ValidationError):
        export_transactions([], "xlsx")
