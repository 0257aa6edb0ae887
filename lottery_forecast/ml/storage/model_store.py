"""Content-addressed model artifact storage on the local filesystem."""

import hashlib
import json
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from lottery_forecast.errors import ArtifactNotFound, CorruptArtifact, StorageError


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@dataclass
class _LockSlot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class ModelStore:
    """Artifacts live at <root>/<hash[:2]>/<hash>.bin, with a <hash>.json sidecar
    listing the strategies that reference them.

    Identical bytes share one file. Every read re-hashes the payload.
    Methods are blocking; async callers run them through an executor.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self._locks: dict[str, _LockSlot] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _locked(self, digest: str) -> Iterator[None]:
        """Per-hash lock; the slot is dropped once no thread holds or waits on it."""
        with self._locks_guard:
            slot = self._locks.setdefault(digest, _LockSlot())
            slot.holders += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._locks_guard:
                slot.holders -= 1
                if slot.holders == 0:
                    del self._locks[digest]

    def _paths(self, digest: str) -> tuple[Path, Path]:
        if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
            raise ArtifactNotFound(digest)
        directory = self.root / digest[:2]
        return directory / f"{digest}.bin", directory / f"{digest}.json"

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _read_meta(self, meta_path: Path) -> dict:
        try:
            meta = json.loads(meta_path.read_text())
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning("Unreadable artifact sidecar {}; rebuilding", meta_path)
            return {}
        return meta if isinstance(meta, dict) else {}

    def _write_meta(self, meta_path: Path, digest: str, size: int | None, owners: list[int]) -> None:
        self._atomic_write(
            meta_path,
            json.dumps({"hash": digest, "size": size, "strategies": sorted(owners)}).encode(),
        )

    def put(self, strategy_id: int, data: bytes) -> str:
        """Store `data` and return its sha256 hex digest."""
        digest = content_hash(data)
        bin_path, meta_path = self._paths(digest)
        with self._locked(digest):
            try:
                if not (bin_path.exists() and content_hash(bin_path.read_bytes()) == digest):
                    self._atomic_write(bin_path, data)
                    logger.info("Stored artifact {} ({} bytes) for strategy {}", digest[:12], len(data), strategy_id)
                else:
                    logger.debug("Artifact {} already stored", digest[:12])
                owners = list(self._read_meta(meta_path).get("strategies", []))
                if strategy_id not in owners:
                    owners.append(strategy_id)
                    self._write_meta(meta_path, digest, len(data), owners)
            except OSError as e:
                raise StorageError(f"writing artifact {digest}: {e}") from e
        return digest

    def get(self, digest: str) -> bytes:
        bin_path, _ = self._paths(digest)
        try:
            data = bin_path.read_bytes()
        except FileNotFoundError:
            raise ArtifactNotFound(digest) from None
        except OSError as e:
            raise StorageError(f"reading artifact {digest}: {e}") from e
        actual = content_hash(data)
        if actual != digest:
            logger.error("Artifact {} failed verification (got {})", digest, actual)
            raise CorruptArtifact(digest, actual)
        return data

    def exists(self, digest: str) -> bool:
        try:
            bin_path, _ = self._paths(digest)
        except ArtifactNotFound:
            return False
        return bin_path.exists()

    def owners(self, digest: str) -> list[int]:
        _, meta_path = self._paths(digest)
        return list(self._read_meta(meta_path).get("strategies", []))

    def delete(self, digest: str, strategy_id: int | None = None) -> bool:
        """Drop one owner (or all when strategy_id is None); remove the file once unowned.

        Returns True when the artifact file was removed. A strategy that does
        not own the artifact removes nothing.
        """
        bin_path, meta_path = self._paths(digest)
        with self._locked(digest):
            meta = self._read_meta(meta_path)
            owners = list(meta.get("strategies", []))
            if strategy_id is not None:
                if strategy_id not in owners:
                    return False
                owners.remove(strategy_id)
                if owners:
                    self._write_meta(meta_path, digest, meta.get("size"), owners)
                    return False
            removed = bin_path.exists()
            bin_path.unlink(missing_ok=True)
            meta_path.unlink(missing_ok=True)
        if removed:
            logger.info("Deleted artifact {}", digest[:12])
        return removed
