from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest
from fastapi.testclient import TestClient

from kincare.billing.checkout import CheckoutGateway
from kincare.config import Settings
from kincare.deps import build_container
from kincare.models.schemas import StructuredReading, Unrecognized

INTERNAL_KEY = "internal-test-key"


class FakeGenerative:
    """Stands in for GenerativeInterpreter; records every call."""

    def __init__(self, reading: StructuredReading | None = None, error: BaseException | None = None):
        self.reading = reading
        self.error = error
        self.calls: list[str] = []
        self.available = True

    async def interpret(self, text: str) -> StructuredReading:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if self.reading is None:
            return Unrecognized(source_text=text, interpreter="generative")
        return self.reading


class CheckoutRecorder:
    def __init__(self):
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append({"path": request.url.path, "headers": dict(request.headers), "body": body})
        return httpx.Response(
            200,
            json={"session_id": f"cks_{len(self.requests)}", "checkout_url": "https://pay.example/checkout"},
        )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'kincare-test.db'}",
        internal_api_key=INTERNAL_KEY,
        openrouter_api_key="",
        dodo_api_key="dodo-test-key",
        dodo_webhook_secret="",
        telegram_bot_token="",
    )


@pytest.fixture
def fake_generative() -> FakeGenerative:
    return FakeGenerative()


@pytest.fixture
def checkout_recorder() -> CheckoutRecorder:
    return CheckoutRecorder()


@pytest.fixture
def container(settings, fake_generative, checkout_recorder):
    checkout = CheckoutGateway(
        api_key=settings.dodo_api_key,
        products={
            "try_it_out": "prod_try",
            "monthly_care": "prod_monthly",
            "yearly_care": "prod_yearly",
            "care_plus": "prod_care_plus",
        },
        client=httpx.Client(
            base_url="https://test.dodopayments.com",
            transport=httpx.MockTransport(checkout_recorder),
        ),
    )
    built = build_container(settings, generative=fake_generative, checkout=checkout)
    yield built
    built.close()


@pytest.fixture
def ledger(container):
    return container.ledger


@pytest.fixture
def reconciler(container):
    return container.reconciler


@pytest.fixture
def client(container):
    from main import create_app

    return TestClient(create_app(container))


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _make(user_id: str) -> dict[str, str]:
        return {"X-User-Id": user_id}

    return _make
