# core/deps.py
"""
Process-wide service graph, exposed as FastAPI dependencies.

Tests swap pieces with app.dependency_overrides; nothing here touches Firebase
until a store method actually runs.
"""
from functools import lru_cache

from app.core.credentials import CredentialResolver
from app.core.store import FirestoreDocumentStore
from app.services.channels import Notifier
from app.services.customer_service import CustomerService
from app.services.dispatcher import SideEffectDispatcher
from app.services.gateways.registry import build_gateways
from app.services.invoice_service import InvoiceService
from app.services.payment_service import PaymentService
from app.services.reconciler import TransactionReconciler
from app.services.reminder_service import ReminderScheduler


@lru_cache
def get_store():
    return FirestoreDocumentStore()


@lru_cache
def get_gateways():
    return build_gateways(CredentialResolver(get_store()))


@lru_cache
def get_notifier():
    return Notifier()


@lru_cache
def get_reconciler():
    store = get_store()
    dispatcher = SideEffectDispatcher(
        store,
        customers=CustomerService(store),
        invoices=InvoiceService(store),
        notifier=get_notifier(),
    )
    return TransactionReconciler(store, dispatcher)


@lru_cache
def get_payment_service():
    return PaymentService(get_store(), get_gateways(), get_reconciler())


@lru_cache
def get_reminder_scheduler():
    return ReminderScheduler(get_store(), get_notifier())
