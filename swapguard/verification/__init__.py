"""swapguard verification — post-mutation criteria and the probe that checks them."""

from swapguard.verification.criteria import (
    BaseCriterion,
    BinaryVersionMatches,
    CallableCriterion,
    FileContainsPattern,
    FileLacksPattern,
    FileNonEmpty,
    LibraryInLinkerCache,
)
from swapguard.verification.probe import VerificationProbe

__all__ = [
    "VerificationProbe",
    "BaseCriterion",
    "BinaryVersionMatches",
    "LibraryInLinkerCache",
    "FileLacksPattern",
    "FileContainsPattern",
    "FileNonEmpty",
    "CallableCriterion",
]
