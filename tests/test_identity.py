import pytest

from chatdesk.utils.identity import (
    STORAGE_KEY,
    IdentityResolver,
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    StorageUnavailableError,
    is_valid_conversation_id,
)


class BrokenStore:

    def __init__(self, fail_get=True):
        self.fail_get = fail_get

    def get(self, key):
        if self.fail_get:
            raise StorageUnavailableError("storage disabled")
        return None

    def set(self, key, value):
        raise StorageUnavailableError("quota exceeded")


def test_same_store_returns_same_id():
    store = MemoryKeyValueStore()
    first = IdentityResolver(store).get_or_create_conversation_id()
    second = IdentityResolver(store).get_or_create_conversation_id()
    assert first == second
    assert store.get(STORAGE_KEY) == first
    assert is_valid_conversation_id(first)


def test_existing_value_is_returned_unchanged():
    store = MemoryKeyValueStore({STORAGE_KEY: "stored-id"})
    resolver = IdentityResolver(store, id_factory=lambda: pytest.fail("should not mint"))
    assert resolver.get_or_create_conversation_id() == "stored-id"


def test_separate_profiles_get_separate_ids():
    a = IdentityResolver(MemoryKeyValueStore()).get_or_create_conversation_id()
    b = IdentityResolver(MemoryKeyValueStore()).get_or_create_conversation_id()
    assert a != b


def test_file_store_survives_reload(tmp_path):
    path = tmp_path / "profile" / "storage.json"
    first = IdentityResolver(JsonFileKeyValueStore(path)).get_or_create_conversation_id()
    # a fresh resolver and store, as after a page reload
    second = IdentityResolver(JsonFileKeyValueStore(path)).get_or_create_conversation_id()
    assert first == second


def test_corrupt_file_falls_back_to_ephemeral(tmp_path):
    path = tmp_path / "storage.json"
    path.write_text("not json")
    resolver = IdentityResolver(JsonFileKeyValueStore(path))
    first = resolver.get_or_create_conversation_id()
    assert resolver.is_ephemeral
    assert resolver.get_or_create_conversation_id() == first


@pytest.mark.parametrize("fail_get", [True, False])
def test_unavailable_storage_uses_ephemeral_id_for_this_load(fail_get):
    ids = iter(["e1", "e2"])
    resolver = IdentityResolver(BrokenStore(fail_get), id_factory=lambda: next(ids))
    assert resolver.get_or_create_conversation_id() == "e1"
    assert resolver.get_or_create_conversation_id() == "e1"
    assert resolver.is_ephemeral


def test_no_storage_is_ephemeral():
    resolver = IdentityResolver(None)
    assert resolver.get_or_create_conversation_id() == resolver.get_or_create_conversation_id()
    assert resolver.is_ephemeral


@pytest.mark.parametrize("value,expected", [
    ("0b7c6a52-3c2e-4d8f-9a57-2f4f3c1d7e10", True),
    ("", False),
    (None, False),
    ("guest-123", False),
])
def test_is_valid_conversation_id(value, expected):
    assert is_valid_conversation_id(value) is expected
