"""
Pytest configuration and fixtures.
"""
import asyncio
import copy
import uuid
from collections import defaultdict
from typing import Any, Dict, List, Optional

import httpx
import pytest

from app.core.credentials import CredentialResolver, MERCHANT_SETTINGS
from app.services.dispatcher import SideEffectDispatcher
from app.services.gateways.registry import build_gateways
from app.services.reconciler import TransactionReconciler

MERCHANT_ID = "merchant_1"

MERCHANT_SETTINGS_DOC = {
    "mpesa": {
        "enabled": True,
        "environment": "sandbox",
        "consumer_key": "ck_test",
        "consumer_secret": "cs_test",
        "shortcode": "174379",
        "passkey": "passkey_test",
    },
    "stripe": {
        "enabled": True,
        "secret_key": "sk_test_123",
        "webhook_secret": "whsec_test_123",
    },
    "paystack": {
        "enabled": True,
        "secret_key": "sk_paystack_test",
    },
    "paypal": {
        "enabled": True,
        "client_id": "paypal_client",
        "client_secret": "paypal_secret",
        "webhook_id": "WH-123",
    },
}


class MemoryStore:
    """In-memory DocumentStore. `mutate` is serialized by one lock, like a Firestore transaction."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self._lock = asyncio.Lock()
        self.added: List[tuple] = []

    def doc(self, collection: str, doc_id: str) -> Optional[dict]:
        return self.collections[collection].get(doc_id)

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        data = self.collections[collection].get(doc_id)
        if data is None:
            return None
        return {**copy.deepcopy(data), "id": doc_id}

    async def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        data = copy.deepcopy(data)
        if merge and doc_id in self.collections[collection]:
            self.collections[collection][doc_id].update(data)
        else:
            self.collections[collection][doc_id] = data

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        if doc_id not in self.collections[collection]:
            raise KeyError(f"{collection}/{doc_id}")
        self.collections[collection][doc_id].update(copy.deepcopy(fields))

    async def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex
        self.collections[collection][doc_id] = copy.deepcopy(data)
        self.added.append((collection, doc_id))
        return doc_id

    async def append(self, collection: str, doc_id: str, field: str, items) -> None:
        if doc_id not in self.collections[collection]:
            raise KeyError(f"{collection}/{doc_id}")
        current = self.collections[collection][doc_id].setdefault(field, [])
        for item in items:
            if item not in current:
                current.append(copy.deepcopy(item))

    async def query(self, collection: str, filters=()) -> List[dict]:
        results = []
        for doc_id, data in self.collections[collection].items():
            if all(op == "==" and data.get(field) == value for field, op, value in filters):
                results.append({**copy.deepcopy(data), "id": doc_id})
        return results

    async def mutate(self, collection: str, doc_id: str, fn):
        # Yield first so concurrent callers really interleave
        await asyncio.sleep(0)
        async with self._lock:
            current = self.collections[collection].get(doc_id)
            fields = fn(copy.deepcopy(current) if current is not None else None)
            if fields is None:
                return None
            merged = {**(current or {}), **copy.deepcopy(fields)}
            self.collections[collection][doc_id] = merged
            return {**copy.deepcopy(merged), "id": doc_id}


class FakeNotifier:
    def __init__(self, fail_phones=(), fail_emails=(), delay: float = 0):
        self.sms: List[tuple] = []
        self.emails: List[tuple] = []
        self.fail_phones = set(fail_phones)
        self.fail_emails = set(fail_emails)
        self.delay = delay

    async def send_sms(self, phone: str, message: str) -> Any:
        if self.delay:
            await asyncio.sleep(self.delay)
        if phone in self.fail_phones:
            raise RuntimeError("SMS HTTP failure: 500")
        self.sms.append((phone, message))
        return {"status": "queued", "recipient": phone}

    async def send_email(self, email: str, subject: str, html: str) -> Any:
        if email in self.fail_emails:
            raise RuntimeError("Email send failed: bounced")
        self.emails.append((email, subject, html))
        return {"id": f"email_{len(self.emails)}"}


class FakeInvoices:
    def __init__(self, fail: bool = False):
        self.generated: List[str] = []
        self.fail = fail

    async def generate(self, transaction: dict) -> str:
        if self.fail:
            raise RuntimeError("storage unavailable")
        self.generated.append(transaction["id"])
        return f"https://storage.example.com/invoices/{transaction['id']}.pdf"


class FakeCustomers:
    def __init__(self):
        self.upserts: List[str] = []

    async def upsert_from_transaction(self, transaction: dict):
        self.upserts.append(transaction["id"])


def pending_transaction(transaction_id: str = "tx_1", **overrides) -> dict:
    data = {
        "owner_uid": MERCHANT_ID,
        "amount": 1500.0,
        "currency": "KES",
        "description": "Logo design",
        "payer_phone": "254712345678",
        "payer_email": "payer@example.com",
        "payer_name": "Jane Wanjiku",
        "payment_processor": "mpesa",
        "gateway_handle": "ws_CO_123",
        "status": "pending",
        "redelivery_count": 0,
        "notification_history": [],
    }
    data.update(overrides)
    return data


@pytest.fixture
def store() -> MemoryStore:
    s = MemoryStore()
    s.collections[MERCHANT_SETTINGS][MERCHANT_ID] = copy.deepcopy(MERCHANT_SETTINGS_DOC)
    return s


@pytest.fixture
def resolver(store) -> CredentialResolver:
    return CredentialResolver(store)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def invoices() -> FakeInvoices:
    return FakeInvoices()


@pytest.fixture
def customers() -> FakeCustomers:
    return FakeCustomers()


@pytest.fixture
def dispatcher(store, customers, invoices, notifier) -> SideEffectDispatcher:
    return SideEffectDispatcher(store, customers=customers, invoices=invoices, notifier=notifier, timeout=1)


@pytest.fixture
def reconciler(store, dispatcher) -> TransactionReconciler:
    return TransactionReconciler(store, dispatcher)


class Routes:
    """httpx.MockTransport handler keyed by (method, path)."""

    def __init__(self):
        self.responses: Dict[tuple, Any] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, status: int = 200, json: Any = None):
        self.responses[(method, path)] = (status, json)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.responses:
            return httpx.Response(404, json={"message": f"no route for {key}"})
        status, body = self.responses[key]
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, json=body if body is not None else {})

    def last(self, path: str) -> httpx.Request:
        return [r for r in self.requests if r.url.path == path][-1]


@pytest.fixture
def routes() -> Routes:
    return Routes()


@pytest.fixture
def gateways(resolver, routes):
    return build_gateways(resolver, timeout=5, transport=httpx.MockTransport(routes))
