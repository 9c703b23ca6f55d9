"""
Shared fixtures: an in-memory stand-in for the Firestore client (only the calls
FirestoreService makes) and small helpers for driving relays in tests.
"""
import asyncio
import copy
from typing import Any, Dict, Iterator, Optional, Tuple

import pytest
from google.api_core.exceptions import AlreadyExists, NotFound

from models.room import Identity
from services.firestore_service import FirestoreService
from services.secret_store import SecretStore

Path = Tuple[str, ...]


class FakeSnapshot:
    def __init__(self, reference: "FakeDocument", data: Optional[Dict[str, Any]]):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._data)


class FakeDocument:
    def __init__(self, client: "FakeFirestoreClient", path: Path):
        self._client = client
        self._path = path
        self.id = path[-1]

    def collection(self, name: str) -> "FakeCollection":
        return FakeCollection(self._client, self._path + (name,))

    def get(self) -> FakeSnapshot:
        return FakeSnapshot(self, self._client.docs.get(self._path))

    def set(self, data: Dict[str, Any]) -> None:
        self._client.docs[self._path] = copy.deepcopy(data)

    def create(self, data: Dict[str, Any]) -> None:
        if self._path in self._client.docs:
            raise AlreadyExists(f"Document already exists: {'/'.join(self._path)}")
        self.set(data)

    def update(self, updates: Dict[str, Any]) -> None:
        if self._path not in self._client.docs:
            raise NotFound(f"No document to update: {'/'.join(self._path)}")
        self._client.docs[self._path].update(copy.deepcopy(updates))

    def delete(self) -> None:
        self._client.docs.pop(self._path, None)


class FakeCollection:
    def __init__(self, client: "FakeFirestoreClient", path: Path):
        self._client = client
        self._path = path

    def document(self, doc_id: str) -> FakeDocument:
        return FakeDocument(self._client, self._path + (doc_id,))

    def stream(self) -> Iterator[FakeSnapshot]:
        depth = len(self._path) + 1
        for path in sorted(self._client.docs):
            if len(path) == depth and path[:-1] == self._path:
                yield FakeSnapshot(FakeDocument(self._client, path), self._client.docs[path])


class FakeFirestoreClient:
    def __init__(self):
        self.docs: Dict[Path, Dict[str, Any]] = {}

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, (name,))


@pytest.fixture
def fake_db() -> FakeFirestoreClient:
    return FakeFirestoreClient()


@pytest.fixture
def fs(fake_db) -> FirestoreService:
    return FirestoreService(db=fake_db)


@pytest.fixture
def store(fs) -> SecretStore:
    return SecretStore(fs)


@pytest.fixture
def players():
    return [Identity(user_id=f"p{i}", display_name=f"Player {i}", credits=10 * i) for i in range(1, 11)]


async def quiet(relay, rounds: int = 6, pause: float = 0.005) -> None:
    """Let timers fire and every scheduled relay delivery land."""
    for _ in range(rounds):
        await asyncio.sleep(pause)
        await relay.settle()
