"""
Snapshot Store
~~~~~~~~~~~~~~

Captures the pre-mutation state of a ResourceSet into scratch storage,
restores it on demand, and keeps a SQLite index so snapshots outlive
the process for manual rollback.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import sqlite3
import stat
import threading
import uuid
from collections import OrderedDict
from datetime import UTC, datetime, timedelta

from swapguard.core.models import (
    ResourceSet,
    RestoreAction,
    RestoreResult,
    Snapshot,
    SnapshotEntry,
)
from swapguard.exceptions import SnapshotError, SnapshotIntegrityError

__all__ = ["SnapshotStore"]

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS snapshots (
    snapshot_id   TEXT PRIMARY KEY,
    resource_set  TEXT NOT NULL,
    location      TEXT NOT NULL,
    manifest      TEXT NOT NULL,
    captured_at   TEXT NOT NULL,
    status        TEXT NOT NULL DEFAULT 'captured'
)
"""

_CHUNK = 1024 * 1024


def _default_root() -> str:
    """Return the default scratch storage directory."""
    return os.path.join(os.path.expanduser("~"), ".swapguard", "snapshots")


def _file_digest(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def _link_digest(target: str) -> str:
    return hashlib.sha256(os.fsencode(target)).hexdigest()


def _tree_digest(root: str) -> str:
    """Digest of a directory tree: relative names, link targets and file contents."""
    h = hashlib.sha256()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        rel_dir = os.path.relpath(dirpath, root)
        h.update(f"d:{rel_dir}\n".encode())
        linked_dirs = [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
        for name in sorted(filenames + linked_dirs):
            full = os.path.join(dirpath, name)
            rel = os.path.join(rel_dir, name)
            if os.path.islink(full):
                h.update(f"l:{rel}:{os.readlink(full)}\n".encode())
            else:
                h.update(f"f:{rel}:{_file_digest(full)}\n".encode())
    return h.hexdigest()


def _fsync_path(path: str) -> None:
    """fsync a regular file or a directory."""
    flags = os.O_RDONLY
    if os.path.isdir(path):
        flags |= getattr(os, "O_DIRECTORY", 0)
    fd = os.open(path, flags)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _outermost(paths: list[str]) -> list[str]:
    """Drop paths that lie inside another captured directory, keeping order."""
    dirs = [p + os.sep for p in paths if os.path.isdir(p) and not os.path.islink(p)]
    return [p for p in paths if not any(p.startswith(d) for d in dirs)]


def _remove_path(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


class SnapshotStore:
    """
    Owns every Snapshot it captures.

    Copies are path-addressed under ``<root>/<snapshot_id>/files/`` and
    described by ``manifest.json``. A capture only returns once copies,
    manifest and index row are all on disk and the copies re-read to
    their recorded digests.
    """

    def __init__(
        self,
        root: str | None = None,
        db_path: str | None = None,
        max_in_memory: int = 100,
    ) -> None:
        self._root = os.path.abspath(root or _default_root())
        self._db_path = db_path or os.path.join(
            os.path.dirname(self._root), "snapshots.db"
        )
        self._max_in_memory = max_in_memory
        self._snapshots: OrderedDict[str, Snapshot] = OrderedDict()
        self._lock = threading.RLock()

        os.makedirs(self._root, exist_ok=True)
        db_dir = os.path.dirname(os.path.abspath(self._db_path))
        os.makedirs(db_dir, exist_ok=True)
        self._init_db()

    @property
    def root(self) -> str:
        return self._root

    def _init_db(self) -> None:
        """Create the snapshots table if it doesn't exist."""
        conn = sqlite3.connect(self._db_path)
        try:
            conn.execute(_CREATE_TABLE_SQL)
            conn.commit()
        finally:
            conn.close()

    def _get_conn(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    # ── Capture ───────────────────────────────────────────────────

    def capture(self, resource_set: ResourceSet) -> Snapshot:
        """
        Capture every path currently matched by the ResourceSet.

        Args:
            resource_set: The component to protect.

        Returns:
            A durable Snapshot.

        Raises:
            SnapshotError: If a source path is unreadable, storage is
                unwritable, or the stored copies fail re-verification.
        """
        captured_at = datetime.now(UTC)
        snapshot_id = (
            f"{resource_set.identifier or 'resources'}-"
            f"{captured_at:%Y%m%dT%H%M%S}-{uuid.uuid4().hex[:8]}"
        )
        location = os.path.join(self._root, snapshot_id)
        snapshot = Snapshot(
            snapshot_id=snapshot_id,
            resource_set=resource_set.with_capture_time(captured_at),
            location=location,
            captured_at=captured_at,
        )

        try:
            os.makedirs(os.path.join(location, "files"))
        except OSError as exc:
            raise SnapshotError(
                f"Cannot create snapshot storage at {location}: {exc}",
                path=location,
            ) from exc

        try:
            for path in _outermost(resource_set.expand()):
                entry = self._capture_path(path, location)
                snapshot.entries.append(entry)
                snapshot.restore_actions.append(
                    RestoreAction(src=entry.stored_path, dst=path, kind=entry.kind)
                )
            self._write_manifest(snapshot)
            self.verify(snapshot)
            self._persist_to_db(snapshot)
        except SnapshotError:
            shutil.rmtree(location, ignore_errors=True)
            raise
        except (OSError, sqlite3.Error) as exc:
            shutil.rmtree(location, ignore_errors=True)
            raise SnapshotError(
                f"Failed to capture {resource_set.identifier!r}: {exc}",
                path=getattr(exc, "filename", None),
            ) from exc

        snapshot.durable = True
        with self._lock:
            self._snapshots[snapshot_id] = snapshot
            while len(self._snapshots) > self._max_in_memory:
                self._snapshots.popitem(last=False)

        logger.info(
            "Captured snapshot %s (%d path(s)) at %s",
            snapshot_id,
            len(snapshot.entries),
            location,
        )
        return snapshot

    def _capture_path(self, path: str, location: str) -> SnapshotEntry:
        stored = os.path.join(location, "files", path.lstrip(os.sep))
        os.makedirs(os.path.dirname(stored), exist_ok=True)
        st = os.lstat(path)

        if stat.S_ISLNK(st.st_mode):
            target = os.readlink(path)
            os.symlink(target, stored)
            return SnapshotEntry(
                original_path=path,
                stored_path=stored,
                kind="symlink",
                digest=_link_digest(target),
                link_target=target,
            )

        if stat.S_ISDIR(st.st_mode):
            shutil.copytree(path, stored, symlinks=True)
            for dirpath, _dirnames, filenames in os.walk(stored):
                for name in filenames:
                    full = os.path.join(dirpath, name)
                    if not os.path.islink(full):
                        _fsync_path(full)
                _fsync_path(dirpath)
            return SnapshotEntry(
                original_path=path,
                stored_path=stored,
                kind="directory",
                digest=_tree_digest(path),
                mode=stat.S_IMODE(st.st_mode),
            )

        if stat.S_ISREG(st.st_mode):
            digest = _file_digest(path)
            shutil.copy2(path, stored)
            _fsync_path(stored)
            return SnapshotEntry(
                original_path=path,
                stored_path=stored,
                kind="file",
                digest=digest,
                mode=stat.S_IMODE(st.st_mode),
            )

        raise SnapshotError(f"Unsupported file type at {path}", path=path)

    def _write_manifest(self, snapshot: Snapshot) -> None:
        """Write manifest.json atomically and fsync it."""
        tmp = snapshot.manifest_path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(snapshot.to_manifest(), f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, snapshot.manifest_path)
        _fsync_path(snapshot.location)

    def verify(self, snapshot: Snapshot) -> None:
        """
        Re-read every stored copy and compare against its recorded digest.

        Raises:
            SnapshotIntegrityError: On the first mismatch or missing copy.
        """
        for entry in snapshot.entries:
            if not os.path.lexists(entry.stored_path):
                raise SnapshotIntegrityError(
                    f"Stored copy missing for {entry.original_path}",
                    path=entry.stored_path,
                )
            if entry.kind == "symlink":
                actual = _link_digest(os.readlink(entry.stored_path))
            elif entry.kind == "directory":
                actual = _tree_digest(entry.stored_path)
            else:
                actual = _file_digest(entry.stored_path)
            if actual != entry.digest:
                raise SnapshotIntegrityError(
                    f"Stored copy of {entry.original_path} does not match its digest",
                    path=entry.stored_path,
                )

    # ── Restore ───────────────────────────────────────────────────

    def restore(self, snapshot: Snapshot) -> RestoreResult:
        """
        Put every captured path back and remove paths created since capture.

        Failures are collected per path; the caller decides what a partial
        restore means.

        Raises:
            SnapshotError: If the snapshot was already disposed.
        """
        if snapshot.disposed:
            raise SnapshotError(
                f"Snapshot {snapshot.snapshot_id} was disposed and cannot be restored",
                path=snapshot.location,
            )

        result = RestoreResult(snapshot_id=snapshot.snapshot_id)
        captured = [e.original_path for e in snapshot.entries]
        captured_set = set(captured)
        captured_dirs = [
            e.original_path + os.sep for e in snapshot.entries if e.kind == "directory"
        ]

        for path in snapshot.resource_set.expand():
            if path in captured_set or any(path.startswith(d) for d in captured_dirs):
                continue
            try:
                _remove_path(path)
                result.removed.append(path)
            except OSError as exc:
                result.failed[path] = f"could not remove: {exc}"

        entries = {e.original_path: e for e in snapshot.entries}
        for action in snapshot.restore_actions:
            entry = entries.get(action.dst)
            try:
                self._restore_action(action, entry)
                result.restored.append(action.dst)
            except OSError as exc:
                result.failed[action.dst] = str(exc)

        if result.ok:
            self._mark(snapshot.snapshot_id, "restored")
            logger.info(
                "Restored snapshot %s (%d restored, %d removed)",
                snapshot.snapshot_id,
                len(result.restored),
                len(result.removed),
            )
        else:
            logger.error(
                "Restore of snapshot %s incomplete: %d path(s) failed",
                snapshot.snapshot_id,
                len(result.failed),
            )
        return result

    def _restore_action(self, action: RestoreAction, entry: SnapshotEntry | None) -> None:
        if not os.path.lexists(action.src):
            raise FileNotFoundError(f"stored copy missing: {action.src}")

        parent = os.path.dirname(action.dst)
        if parent:
            os.makedirs(parent, exist_ok=True)

        if action.kind == "symlink":
            if os.path.lexists(action.dst):
                _remove_path(action.dst)
            os.symlink(os.readlink(action.src), action.dst)
            return

        if action.kind == "directory":
            if os.path.lexists(action.dst):
                _remove_path(action.dst)
            shutil.copytree(action.src, action.dst, symlinks=True)
            if entry is not None and entry.mode is not None:
                os.chmod(action.dst, entry.mode)
            return

        if os.path.isdir(action.dst) and not os.path.islink(action.dst):
            shutil.rmtree(action.dst)
        # Copy beside the target, then rename over it.
        tmp = f"{action.dst}.swapguard-{uuid.uuid4().hex[:8]}"
        try:
            shutil.copy2(action.src, tmp)
            if entry is not None and entry.mode is not None:
                os.chmod(tmp, entry.mode)
            os.replace(tmp, action.dst)
        finally:
            if os.path.lexists(tmp):
                os.unlink(tmp)

    # ── Lifecycle ─────────────────────────────────────────────────

    def dispose(self, snapshot: Snapshot) -> None:
        """
        Delete the stored copies and the index row. Safe to call repeatedly.

        Raises:
            SnapshotError: If the stored copies exist but cannot be removed.
        """
        if snapshot.disposed:
            return

        if os.path.exists(snapshot.location):
            try:
                shutil.rmtree(snapshot.location)
            except OSError as exc:
                raise SnapshotError(
                    f"Cannot dispose snapshot {snapshot.snapshot_id}: {exc}",
                    path=snapshot.location,
                ) from exc

        with self._lock:
            self._snapshots.pop(snapshot.snapshot_id, None)

        try:
            self._delete_row(snapshot.snapshot_id)
        except sqlite3.Error as exc:
            raise SnapshotError(
                f"Cannot remove snapshot {snapshot.snapshot_id} from the index: {exc}",
                path=self._db_path,
            ) from exc

        snapshot.disposed = True
        logger.debug("Disposed snapshot %s", snapshot.snapshot_id)

    def mark_committed(self, snapshot: Snapshot) -> None:
        """Record that the transaction using this snapshot committed."""
        self._mark(snapshot.snapshot_id, "committed")

    def get(self, snapshot_id: str) -> Snapshot | None:
        """
        Retrieve a snapshot by ID.

        Returns:
            The Snapshot, or None if it is unknown or its storage is gone.
        """
        with self._lock:
            if snapshot_id in self._snapshots:
                return self._snapshots[snapshot_id]
        return self._load_from_db(snapshot_id)

    def list_snapshots(self) -> list[dict[str, str]]:
        """Return index rows for every stored snapshot, oldest first."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT snapshot_id, resource_set, location, captured_at, status "
                "FROM snapshots ORDER BY captured_at"
            ).fetchall()
        finally:
            conn.close()
        return [
            {
                "snapshot_id": row[0],
                "resource_set": row[1],
                "location": row[2],
                "captured_at": row[3],
                "status": row[4],
            }
            for row in rows
        ]

    def cleanup(self, older_than_hours: float = 24 * 7) -> int:
        """
        Dispose snapshots captured before the cutoff.

        Returns the count of disposed snapshots.
        """
        cutoff = datetime.now(UTC) - timedelta(hours=older_than_hours)
        count = 0
        for row in self.list_snapshots():
            if datetime.fromisoformat(row["captured_at"]) >= cutoff:
                continue
            snapshot = self.get(row["snapshot_id"])
            if snapshot is None:
                self._delete_row(row["snapshot_id"])
            else:
                self.dispose(snapshot)
            count += 1
        return count

    # ── Index ─────────────────────────────────────────────────────

    def _persist_to_db(self, snapshot: Snapshot) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """INSERT OR REPLACE INTO snapshots
                   (snapshot_id, resource_set, location, manifest, captured_at, status)
                   VALUES (?, ?, ?, ?, ?, 'captured')""",
                (
                    snapshot.snapshot_id,
                    snapshot.resource_set.identifier,
                    snapshot.location,
                    json.dumps(snapshot.to_manifest()),
                    snapshot.captured_at.isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def _load_from_db(self, snapshot_id: str) -> Snapshot | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT location, manifest FROM snapshots WHERE snapshot_id = ?",
                (snapshot_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        if not os.path.isdir(row[0]):
            logger.warning(
                "Snapshot %s is indexed but its storage %s is gone", snapshot_id, row[0]
            )
            return None
        try:
            return Snapshot.from_manifest(json.loads(row[1]), location=row[0])
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            logger.error("Failed to load snapshot %s: %s", snapshot_id, exc)
            return None

    def _mark(self, snapshot_id: str, status: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE snapshots SET status = ? WHERE snapshot_id = ?",
                (status, snapshot_id),
            )
            conn.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to mark snapshot %s %s: %s", snapshot_id, status, exc)
        finally:
            conn.close()

    def _delete_row(self, snapshot_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM snapshots WHERE snapshot_id = ?", (snapshot_id,))
            conn.commit()
        finally:
            conn.close()
