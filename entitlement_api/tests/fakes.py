"""In-memory stand-ins for Firestore and the store verifiers.

FakeFirestore supports what EntitlementStore uses: documents, subcollections,
merge writes, create-if-absent, equality queries with limit, collection-group
queries and batched deletes.
"""
from datetime import datetime, timedelta, timezone

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from entitlement_api.billing.transaction import ValidatedTransaction

TEST_UID = "user-1"
TEST_EMAIL = "Person@Example.com"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"

# =============================================================================
# FAKE FIRESTORE
# =============================================================================

def _resolve(value):
    if value is firestore.SERVER_TIMESTAMP:
        return datetime.now(timezone.utc)
    return value


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeQuery:
    def __init__(self, db, docs_fn, filters=(), limit_count=None):
        self._db = db
        self._docs_fn = docs_fn
        self._filters = tuple(filters)
        self._limit = limit_count

    def where(self, field_name, op, value):
        assert op == "==", "fake supports equality only"
        return FakeQuery(self._db, self._docs_fn, self._filters + ((field_name, value),), self._limit)

    def limit(self, count):
        return FakeQuery(self._db, self._docs_fn, self._filters, count)

    def stream(self):
        results = []
        for path in self._docs_fn():
            data = self._db.docs[path]
            if all(data.get(f) == v for f, v in self._filters):
                results.append(FakeSnapshot(FakeDocumentRef(self._db, path), data))
                if self._limit is not None and len(results) >= self._limit:
                    break
        return iter(results)


class FakeCollectionRef(FakeQuery):
    def __init__(self, db, path):
        self.path = tuple(path)
        super().__init__(db, self._doc_paths)

    @property
    def id(self):
        return self.path[-1]

    @property
    def parent(self):
        return FakeDocumentRef(self._db, self.path[:-1]) if len(self.path) > 1 else None

    def _doc_paths(self):
        n = len(self.path) + 1
        return [p for p in list(self._db.docs) if len(p) == n and p[:-1] == self.path]

    def document(self, doc_id):
        return FakeDocumentRef(self._db, self.path + (doc_id,))


class FakeDocumentRef:
    def __init__(self, db, path):
        self._db = db
        self.path = tuple(path)

    @property
    def id(self):
        return self.path[-1]

    @property
    def parent(self):
        return FakeCollectionRef(self._db, self.path[:-1])

    def get(self):
        return FakeSnapshot(self, self._db.docs.get(self.path))

    def set(self, data, merge=False):
        resolved = {k: _resolve(v) for k, v in data.items()}
        if merge and self.path in self._db.docs:
            self._db.docs[self.path].update(resolved)
        else:
            self._db.docs[self.path] = resolved

    def create(self, data):
        if self.path in self._db.docs:
            raise gcp_exceptions.AlreadyExists("document exists")
        self.set(data)

    def delete(self):
        self._db.docs.pop(self.path, None)

    def collection(self, name):
        return FakeCollectionRef(self._db, self.path + (name,))

    def collections(self):
        n = len(self.path)
        names = sorted({p[n] for p in self._db.docs if len(p) > n + 1 and p[:n] == self.path})
        return [self.collection(name) for name in names]


class FakeBatch:
    def __init__(self):
        self._deletes = []

    def delete(self, ref):
        self._deletes.append(ref)

    def commit(self):
        for ref in self._deletes:
            ref.delete()


class FakeFirestore:
    def __init__(self):
        self.docs = {}

    def collection(self, name):
        return FakeCollectionRef(self, (name,))

    def collection_group(self, name):
        def paths():
            return [p for p in list(self.docs) if len(p) >= 2 and p[-2] == name]
        return FakeQuery(self, paths)

    def batch(self):
        return FakeBatch()

    # Test helpers
    def put(self, path, data):
        self.docs[tuple(path.split("/"))] = dict(data)

    def read(self, path):
        return self.docs.get(tuple(path.split("/")))


# =============================================================================
# FAKE VERIFIERS
# =============================================================================

class FakeStoreVerifier:
    """Stands in for AppleReceiptVerifier / GooglePlayVerifier; records calls."""

    def __init__(self):
        self.result = None
        self.error = None
        self.calls = []

    def _respond(self, name, *args):
        self.calls.append((name, args))
        if self.error is not None:
            raise self.error
        return self.result

    def verify_subscription(self, *args):
        return self._respond("verify_subscription", *args)

    def verify_lifetime(self, *args):
        return self._respond("verify_lifetime", *args)


def make_transaction(**overrides):
    now = datetime.now(timezone.utc)
    values = dict(
        platform="ios",
        product_id="com.braveheartinnovations.debateai.premium.monthly",
        is_lifetime=False,
        expires_at=now + timedelta(days=30),
        in_trial=False,
        trial_window=None,
        auto_renewing=True,
    )
    values.update(overrides)
    return ValidatedTransaction(**values)


def make_trial_transaction(**overrides):
    now = datetime.now(timezone.utc)
    values = dict(
        in_trial=True,
        expires_at=now + timedelta(days=7),
        trial_window=(now, now + timedelta(days=7)),
    )
    values.update(overrides)
    return make_transaction(**values)


