import json

from roomchat.local_store import HiddenMessageSet, LocalEchoStore, LocalStorage, hidden_messages_key
from roomchat.models import Message


def test_hidden_set_persists_without_duplicates(tmp_path):
    storage = LocalStorage(tmp_path / "local_storage.json")
    hidden = HiddenMessageSet(storage, "r1", "alice")

    assert hidden.add("m1") is True
    assert hidden.add("m1") is False
    assert hidden.add("m2") is True

    reloaded = HiddenMessageSet(LocalStorage(tmp_path / "local_storage.json"), "r1", "alice")
    assert list(reloaded) == ["m1", "m2"]
    assert "m1" in reloaded
    assert len(reloaded) == 2

    raw = json.loads((tmp_path / "local_storage.json").read_text(encoding="utf-8"))
    assert json.loads(raw["hiddenMessages:r1:alice"]) == ["m1", "m2"]


def test_hidden_set_is_scoped_by_room_and_nickname():
    storage = LocalStorage()
    HiddenMessageSet(storage, "r1", "alice").add("m1")

    assert "m1" not in HiddenMessageSet(storage, "r2", "alice")
    assert "m1" not in HiddenMessageSet(storage, "r1", "bob")
    assert hidden_messages_key("r1", "alice") == "hiddenMessages:r1:alice"


def test_hiding_on_one_device_leaves_other_devices_untouched(tmp_path):
    laptop = HiddenMessageSet(LocalStorage(tmp_path / "laptop.json"), "r1", "alice")
    phone = HiddenMessageSet(LocalStorage(tmp_path / "phone.json"), "r1", "alice")

    laptop.add("m1")

    assert "m1" in laptop
    assert "m1" not in phone
    assert not (tmp_path / "phone.json").exists()


def test_unreadable_storage_is_treated_as_empty(tmp_path):
    path = tmp_path / "local_storage.json"
    path.write_text("{not json", encoding="utf-8")
    storage = LocalStorage(path)

    assert storage.get_item("anything") is None
    hidden = HiddenMessageSet(storage, "r1", "alice")
    assert len(hidden) == 0
    hidden.add("m9")
    assert HiddenMessageSet(LocalStorage(path), "r1", "alice").as_frozenset() == frozenset({"m9"})


def test_malformed_hidden_entry_is_ignored():
    storage = LocalStorage()
    storage.set_item(hidden_messages_key("r1", "alice"), json.dumps({"m1": True}))

    assert len(HiddenMessageSet(storage, "r1", "alice")) == 0


def test_storage_file_is_private(tmp_path):
    path = tmp_path / "nested" / "local_storage.json"
    storage = LocalStorage(path)
    storage.set_item("k", "v")
    storage.remove_item("k")
    storage.remove_item("missing")

    assert storage.get_item("k") is None
    assert (path.stat().st_mode & 0o777) == 0o600


def test_echo_store_replaces_wholesale():
    echo = LocalEchoStore()
    echo.replace_all([Message(id="m1", text="one", name="alice"), Message(id="m2", text="two", name="bob")])
    echo.replace_all([Message(id="m2", text="two", name="bob")])

    assert [m.id for m in echo.messages()] == ["m2"]
    assert echo.get("m1") is None
    assert echo.get("m2").text == "two"
    assert len(echo) == 1

    echo.clear()
    assert echo.messages() == []
