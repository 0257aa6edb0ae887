import json

import pytest

from lottery_forecast.errors import ArtifactNotFound, CorruptArtifact
from lottery_forecast.ml.storage.model_store import ModelStore, content_hash


@pytest.fixture
def store(tmp_path):
    return ModelStore(tmp_path / "artifacts")


def test_put_get(store):
    digest = store.put(1, b"weights")
    assert digest == content_hash(b"weights")
    assert store.get(digest) == b"weights"
    assert store.exists(digest)
    assert store.owners(digest) == [1]


def test_identical_bytes_share_one_artifact(store, tmp_path):
    a = store.put(1, b"same")
    b = store.put(2, b"same")
    assert a == b
    assert store.owners(a) == [1, 2]
    assert len(list((tmp_path / "artifacts").rglob("*.bin"))) == 1


def test_missing_artifact(store):
    with pytest.raises(ArtifactNotFound):
        store.get("0" * 64)
    with pytest.raises(ArtifactNotFound):
        store.get("not-a-hash")
    assert not store.exists("not-a-hash")


def test_corrupt_artifact_is_detected(store, tmp_path):
    digest = store.put(1, b"original")
    [path] = (tmp_path / "artifacts").rglob("*.bin")
    path.write_bytes(b"tampered")
    with pytest.raises(CorruptArtifact) as exc:
        store.get(digest)
    assert exc.value.actual_hash == content_hash(b"tampered")


def test_put_repairs_corrupt_file(store, tmp_path):
    digest = store.put(1, b"original")
    [path] = (tmp_path / "artifacts").rglob("*.bin")
    path.write_bytes(b"tampered")
    store.put(1, b"original")
    assert store.get(digest) == b"original"


def test_delete_keeps_artifact_until_unowned(store):
    digest = store.put(1, b"shared")
    store.put(2, b"shared")
    assert store.delete(digest, strategy_id=1) is False
    assert store.get(digest) == b"shared"
    assert store.delete(digest, strategy_id=2) is True
    assert not store.exists(digest)


def test_delete_keeps_size_in_sidecar(store, tmp_path):
    digest = store.put(1, b"shared")
    store.put(2, b"shared")
    store.delete(digest, strategy_id=1)
    [meta_path] = (tmp_path / "artifacts").rglob("*.json")
    meta = json.loads(meta_path.read_text())
    assert meta == {"hash": digest, "size": len(b"shared"), "strategies": [2]}


def test_delete_by_non_owner_is_a_no_op(store, tmp_path):
    digest = store.put(1, b"weights")
    assert store.delete(digest, strategy_id=99) is False
    assert store.owners(digest) == [1]
    assert store.get(digest) == b"weights"

    [meta_path] = (tmp_path / "artifacts").rglob("*.json")
    meta_path.unlink()
    assert store.delete(digest, strategy_id=99) is False
    assert store.exists(digest)
    assert store.delete(digest) is True


def test_hash_locks_are_released(store):
    digest = store.put(1, b"weights")
    store.delete(digest, strategy_id=1)
    assert store._locks == {}
