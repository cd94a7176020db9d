# core/store.py
"""
Document store used by the payment core.

Only per-document operations are needed: reads, merges, appends, equality
queries and one conditional read-modify-write (`mutate`) that runs inside a
Firestore transaction. `mutate` is what makes status transitions and the
reminder sweep lease safe under concurrent delivery.
"""
import asyncio
import logging
from functools import partial
from typing import Any, Callable, Iterable, List, Optional, Protocol, Tuple

from firebase_admin import firestore
from google.api_core.exceptions import Aborted
from google.cloud.firestore_v1.base_query import FieldFilter

from app.core.errors import ReconciliationConflict

logger = logging.getLogger("paynow")

Filter = Tuple[str, str, Any]
Mutation = Callable[[Optional[dict]], Optional[dict]]


async def firestore_run(fn, *args, **kwargs):
    """Run a blocking Firestore SDK call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(fn, *args, **kwargs))


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> Optional[dict]: ...

    async def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None: ...

    async def update(self, collection: str, doc_id: str, fields: dict) -> None: ...

    async def add(self, collection: str, data: dict) -> str: ...

    async def append(self, collection: str, doc_id: str, field: str, items: Iterable[Any]) -> None: ...

    async def query(self, collection: str, filters: Iterable[Filter] = ()) -> List[dict]: ...

    async def mutate(self, collection: str, doc_id: str, fn: Mutation) -> Optional[dict]:
        """
        Atomically read the document, call `fn(current)` and merge the fields
        it returns. `fn` receives None when the document does not exist and
        returns None to abort without writing, or raises to abort with an error
        that propagates to the caller. Returns the merged document, or None when
        aborted. `fn` may be called more than once on contention, so
        it must not have side effects.
        """
        ...


class FirestoreDocumentStore:
    """DocumentStore backed by the Firestore Admin SDK."""

    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        if self._db is None:
            from app.core.firebase import get_db
            self._db = get_db()
        return self._db

    def _ref(self, collection: str, doc_id: str):
        return self.db.collection(collection).document(doc_id)

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        snap = await firestore_run(self._ref(collection, doc_id).get)
        if not snap.exists:
            return None
        return {**snap.to_dict(), "id": snap.id}

    async def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        await firestore_run(self._ref(collection, doc_id).set, data, merge=merge)

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        await firestore_run(self._ref(collection, doc_id).update, fields)

    async def add(self, collection: str, data: dict) -> str:
        _, ref = await firestore_run(self.db.collection(collection).add, data)
        return ref.id

    async def append(self, collection: str, doc_id: str, field: str, items: Iterable[Any]) -> None:
        await firestore_run(
            self._ref(collection, doc_id).update,
            {field: firestore.ArrayUnion(list(items))}
        )

    async def query(self, collection: str, filters: Iterable[Filter] = ()) -> List[dict]:
        def run():
            q = self.db.collection(collection)
            for field, op, value in filters:
                q = q.where(filter=FieldFilter(field, op, value))
            return [{**doc.to_dict(), "id": doc.id} for doc in q.stream()]

        return await firestore_run(run)

    async def mutate(self, collection: str, doc_id: str, fn: Mutation) -> Optional[dict]:
        ref = self._ref(collection, doc_id)

        @firestore.transactional
        def txn(transaction):
            snap = ref.get(transaction=transaction)
            current = snap.to_dict() if snap.exists else None
            fields = fn(dict(current) if current is not None else None)
            if fields is None:
                return None
            transaction.set(ref, fields, merge=True)
            return {**(current or {}), **fields, "id": doc_id}

        try:
            return await firestore_run(lambda: txn(self.db.transaction()))
        except (Aborted, ValueError) as e:
            # The SDK retries Aborted itself and then raises ValueError from the last Aborted
            if not isinstance(e, Aborted) and not isinstance(e.__cause__, Aborted):
                raise
            logger.warning(f"Transaction on {collection}/{doc_id} aborted after retries: {e}")
            raise ReconciliationConflict(f"Concurrent update on {collection}/{doc_id}")
