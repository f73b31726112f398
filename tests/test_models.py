import pytest

from filerelay.errors import InactiveSession, InvalidPassword, SessionNotFound
from filerelay.models import FileRecord, SessionStore


def make_record(file_id="f1", name="a.txt", size=3):
    return FileRecord(id=file_id, name=name, path=f"/tmp/{file_id}", stored_name=f"1-{name}",
                      size=size, content_type="text/plain", uploaded_at=0.0)


def test_session_ids_are_unique_and_eight_chars():
    store = SessionStore()
    ids = {store.create().id for _ in range(500)}
    assert len(ids) == 500
    assert all(len(i) == 8 for i in ids)


def test_new_session_defaults():
    store = SessionStore()
    s = store.create()
    assert s.active
    assert s.files == []
    assert s.connected == 0
    assert s.sender_name == "Anonymous"
    assert not s.requires_password


def test_get_unknown_session():
    with pytest.raises(SessionNotFound):
        SessionStore().get("nope1234")


@pytest.mark.parametrize("attempt", ["", None, "anything"])
def test_verify_without_password_accepts_any_attempt(attempt):
    store = SessionStore()
    s = store.create()
    assert store.verify_password(s.id, attempt) is True


def test_verify_password_is_exact_and_case_sensitive():
    store = SessionStore()
    s = store.create(password="abc", sender_name="alice")
    assert store.verify_password(s.id, "abc") is True
    for attempt in ("xyz", "ABC", "", None):
        with pytest.raises(InvalidPassword):
            store.verify_password(s.id, attempt)


def test_verify_unknown_session():
    with pytest.raises(SessionNotFound):
        SessionStore().verify_password("missing!", "abc")


def test_append_files_on_closed_session_leaves_files_untouched():
    store = SessionStore()
    s = store.create()
    store.append_files(s.id, [make_record("f1")])
    store.close(s.id)
    with pytest.raises(InactiveSession):
        store.append_files(s.id, [make_record("f2")])
    assert [f.id for f in store.get(s.id).files] == ["f1"]


def test_close_is_irreversible():
    store = SessionStore()
    s = store.create()
    store.close(s.id)
    store.close(s.id)
    assert store.get(s.id).active is False


def test_connection_count_never_goes_negative():
    store = SessionStore()
    s = store.create()
    store.connect(s.id)
    store.disconnect(s.id)
    store.disconnect(s.id)
    assert store.get(s.id).connected == 0


def test_disconnect_from_removed_session():
    store = SessionStore()
    s = store.create()
    store.connect(s.id)
    store.delete(s.id)
    assert store.disconnect(s.id) is None


def test_garbage_collect_removes_only_expired():
    store = SessionStore()
    old = store.create()
    fresh = store.create()
    old.created_at -= 7200
    assert store.garbage_collect(3600) == [old.id]
    assert len(store) == 1
    assert store.get(fresh.id) is fresh


def test_public_views_hide_storage_path():
    store = SessionStore()
    s = store.create(password="pw", sender_name="bob")
    store.append_files(s.id, [make_record()])
    assert s.public_files() == [{"id": "f1", "name": "a.txt", "size": 3, "type": "text/plain"}]
    assert s.to_info() == {
        "sessionId": s.id,
        "senderName": "bob",
        "fileCount": 1,
        "connectedClients": 0,
        "requiresPassword": True,
    }
