"""swapguard snapshot system — capture, restore and disposal of protected state."""

from swapguard.snapshot.store import SnapshotStore

__all__ = ["SnapshotStore"]
