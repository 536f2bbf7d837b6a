from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path

import pytest
import requests

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from auth import register_user
from database import make_session_factory
from finance_store import FinanceStore
from holdings import Holding, InvestmentCategory


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else str(payload)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Stands in for ``requests.Session``; replays queued responses or exceptions."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)


class FakeLLM:
    """Scripted LLM: each ``generate`` call returns the next queued answer."""

    def __init__(self, *answers, configured=True):
        self.answers = list(answers)
        self.prompts = []
        self.is_configured = configured

    def generate(self, prompt, as_json=False):
        self.prompts.append((prompt, as_json))
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def gemini_payload(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def make_holding(asset_id="bitcoin", amount=100.0, buy_price=10.0, category=InvestmentCategory.CRYPTO,
                 purchase_date=dt.date(2024, 1, 1), name=None, symbol=None, id=None):
    return Holding(
        id=id,
        asset_id=asset_id,
        symbol=symbol or asset_id[:3].upper(),
        name=name or asset_id.title(),
        amount=amount,
        buy_price=buy_price,
        category=category,
        purchase_date=purchase_date,
    )


@pytest.fixture()
def session_factory():
    return make_session_factory("sqlite://")


@pytest.fixture()
def user(session_factory):
    return register_user("ana@example.com", "secret123", name="Ana", session_factory=session_factory)


@pytest.fixture()
def store(session_factory, user):
    s = FinanceStore(session_factory, today=dt.date(2024, 5, 15))
    s.sign_in(user.id)
    return s


@pytest.fixture()
def connection_error():
    return requests.ConnectionError("connection refused")
