"""
Tests for the Firestore-backed store's conditional write, driven through the
SDK's own transactional retry loop with a fake transaction.
"""
from unittest.mock import MagicMock

import pytest
from google.api_core.exceptions import Aborted

from app.core.errors import ReconciliationConflict, ValidationError
from app.core.store import FirestoreDocumentStore


class FakeTransaction:
    """Just enough of firestore_v1.Transaction for the @transactional wrapper."""

    _read_only = False
    _max_attempts = 3

    def __init__(self, abort: bool = False):
        self.abort = abort
        self._id = None
        self.begins = 0
        self.commits = 0
        self.rolled_back = False
        self.writes = []

    def _clean_up(self):
        self._id = None

    def _begin(self, retry_id=None):
        self.begins += 1
        self._id = b"txn-1"

    def _commit(self):
        self.commits += 1
        if self.abort:
            raise Aborted("Too much contention on these documents. Please try again.")
        return []

    def _rollback(self):
        self.rolled_back = True
        self._clean_up()

    def set(self, ref, data, merge=False):
        self.writes.append((data, merge))


def firestore_db(transaction: FakeTransaction, current=None) -> MagicMock:
    db = MagicMock()
    db.transaction.return_value = transaction
    snap = db.collection.return_value.document.return_value.get.return_value
    snap.exists = current is not None
    snap.to_dict.return_value = current
    return db


class TestMutate:
    @pytest.mark.unit
    async def test_commit_merges_fields(self) -> None:
        transaction = FakeTransaction()
        store = FirestoreDocumentStore(firestore_db(transaction, {"status": "pending", "amount": 1500}))

        doc = await store.mutate("transactions", "tx_1", lambda current: {"status": "success"})

        assert doc == {"status": "success", "amount": 1500, "id": "tx_1"}
        assert transaction.writes == [({"status": "success"}, True)]
        assert transaction.commits == 1

    @pytest.mark.unit
    async def test_exhausted_retries_become_a_conflict(self) -> None:
        transaction = FakeTransaction(abort=True)
        store = FirestoreDocumentStore(firestore_db(transaction, {"status": "pending"}))

        with pytest.raises(ReconciliationConflict):
            await store.mutate("transactions", "tx_1", lambda current: {"status": "success"})

        assert transaction.commits == FakeTransaction._max_attempts
        assert transaction.rolled_back

    @pytest.mark.unit
    async def test_errors_raised_by_the_mutation_propagate(self) -> None:
        transaction = FakeTransaction()
        store = FirestoreDocumentStore(firestore_db(transaction, {"status": "success"}))

        def refuse(current):
            raise ValidationError("Transaction tx_1 is already success", field="transactionId")

        with pytest.raises(ValidationError):
            await store.mutate("transactions", "tx_1", refuse)

        assert transaction.commits == 0
        assert transaction.rolled_back

    @pytest.mark.unit
    async def test_aborting_mutation_writes_nothing(self) -> None:
        transaction = FakeTransaction()
        store = FirestoreDocumentStore(firestore_db(transaction))

        assert await store.mutate("locks", "reminder_sweep", lambda current: None) is None
        assert transaction.writes == []
