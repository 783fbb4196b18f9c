import os
import stat

import pytest

from errors import SecureStorageError
from secure_storage import FileSecureStorage, MemorySecureStorage


@pytest.fixture(params=["memory", "file"])
def any_storage(request, tmp_path):
    if request.param == "memory":
        return MemorySecureStorage()
    return FileSecureStorage(str(tmp_path / "secrets" / "store.json"))


def test_set_get_remove(any_storage):
    assert any_storage.get_item("userPIN") is None

    any_storage.set_item("userPIN", "hash-1")
    any_storage.set_item("userPIN", "hash-2")
    assert any_storage.get_item("userPIN") == "hash-2"

    any_storage.remove_item("userPIN")
    assert any_storage.get_item("userPIN") is None


def test_remove_missing_key_is_noop(any_storage):
    any_storage.remove_item("nothing-here")
    assert any_storage.get_item("nothing-here") is None


def test_file_storage_persists_across_instances(tmp_path):
    path = str(tmp_path / "store.json")
    FileSecureStorage(path).set_item("encryptionKey", "abc")
    assert FileSecureStorage(path).get_item("encryptionKey") == "abc"


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions only")
def test_file_storage_is_owner_only(tmp_path):
    path = tmp_path / "store.json"
    FileSecureStorage(str(path)).set_item("k", "v")

    mode = stat.S_IMODE(path.stat().st_mode)
    assert mode == 0o600


def test_corrupt_file_raises(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(SecureStorageError):
        FileSecureStorage(str(path)).get_item("k")
