# services/customer_service.py
import logging
from typing import Dict, Optional

from app.core.store import DocumentStore
from app.models.customer_model import Customer, PaymentMethodStats
from app.models.transaction_model import utcnow

logger = logging.getLogger("paynow.side_effects")


def customers_collection(merchant_id: str) -> str:
    return f"merchants/{merchant_id}/customers"


def customer_key(transaction: dict) -> Optional[str]:
    return transaction.get("payer_phone") or transaction.get("payer_email")


def preferred_method(methods: Dict[str, PaymentMethodStats]) -> Optional[str]:
    """Highest count wins; on a tie the processor seen first keeps it."""
    best, best_count = None, -1
    for name, stats in methods.items():
        if stats.count > best_count:
            best, best_count = name, stats.count
    return best


class CustomerService:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def upsert_from_transaction(self, transaction: dict) -> Optional[Customer]:
        merchant_id = transaction.get("owner_uid")
        key = customer_key(transaction)
        if not merchant_id or not key:
            logger.info(f"No customer identity on {transaction.get('id')}, skipping customer upsert")
            return None

        amount = float(transaction.get("amount") or 0)
        processor = transaction.get("payment_processor") or "unknown"
        now = utcnow()

        def fn(current: Optional[dict]) -> dict:
            customer = Customer(**{**(current or {}), "id": key})
            stats = customer.payment_methods.get(processor) or PaymentMethodStats()
            customer.payment_methods[processor] = PaymentMethodStats(
                count=stats.count + 1,
                total_spent=stats.total_spent + amount,
                last_used=now,
            )

            fields = {
                "name": transaction.get("payer_name") or customer.name,
                "phone_number": transaction.get("payer_phone") or customer.phone_number,
                "email": transaction.get("payer_email") or customer.email,
                "total_transactions": customer.total_transactions + 1,
                "total_spent": customer.total_spent + amount,
                "last_transaction_amount": amount,
                "last_transaction_date": now,
                "payment_methods": {
                    name: s.model_dump() for name, s in customer.payment_methods.items()
                },
                "preferred_payment_method": preferred_method(customer.payment_methods),
                "updated_at": now,
            }
            if current is None:
                fields["created_at"] = now
            return fields

        collection = customers_collection(merchant_id)
        doc = await self.store.mutate(collection, key, fn)

        await self.store.set(f"{collection}/{key}/transactions", transaction["id"], {
            "transaction_id": transaction["id"],
            "amount": amount,
            "currency": transaction.get("currency"),
            "description": transaction.get("description"),
            "status": transaction.get("status"),
            "payment_processor": processor,
            "receipt_number": transaction.get("receipt_number"),
            "created_at": now,
        })

        logger.info(f"👤 Customer {key} updated for merchant {merchant_id} ({doc.get('total_transactions')} payments)")
        return Customer(**doc)
