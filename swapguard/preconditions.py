"""
Preconditions
~~~~~~~~~~~~~

Checks run before anything is captured: required external tools, and
whether the process runs with the privileges the job expects. Missing
tools may be handed to a pluggable package installer.
"""

from __future__ import annotations

import logging
import os
import shutil
from abc import ABC, abstractmethod
from collections.abc import Sequence

from swapguard.exceptions import MissingToolError, UnsupportedEnvironmentError

__all__ = ["BasePackageInstaller", "PreconditionChecker"]

logger = logging.getLogger(__name__)


class BasePackageInstaller(ABC):
    """
    Capability interface for installing missing tools.

    swapguard ships no concrete installer; distribution-specific
    implementations are supplied by the embedding application.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier of the package manager, e.g. "apt"."""
        ...

    @abstractmethod
    def install(self, packages: Sequence[str]) -> bool:
        """
        Install the given packages.

        Returns:
            True if the installer reports success.
        """
        ...


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


class PreconditionChecker:
    """
    Verifies the environment before a transaction.

    Args:
        required_tools: Executables that must be on PATH.
        packages: Maps a tool to the package that provides it.
        forbid_root: Refuse to run as root.
        require_root: Refuse to run as anyone but root.
        installer: Optional installer tried once for missing tools.
    """

    def __init__(
        self,
        required_tools: Sequence[str] = (),
        packages: dict[str, str] | None = None,
        forbid_root: bool = False,
        require_root: bool = False,
        installer: BasePackageInstaller | None = None,
    ) -> None:
        if forbid_root and require_root:
            raise ValueError("forbid_root and require_root are mutually exclusive")
        self._tools = list(required_tools)
        self._packages = packages or {}
        self._forbid_root = forbid_root
        self._require_root = require_root
        self._installer = installer

    def missing_tools(self) -> list[str]:
        return [tool for tool in self._tools if shutil.which(tool) is None]

    def check(self) -> None:
        """
        Raise if the environment is unsuitable.

        Raises:
            UnsupportedEnvironmentError: On a root/non-root mismatch.
            MissingToolError: If tools are still missing after any install attempt.
        """
        root = _is_root()
        if self._forbid_root and root:
            raise UnsupportedEnvironmentError("Refusing to run as root")
        if self._require_root and not root:
            raise UnsupportedEnvironmentError("This job must run as root")

        missing = self.missing_tools()
        if not missing:
            return

        if self._installer is not None:
            packages = sorted({self._packages.get(t, t) for t in missing})
            logger.warning(
                "Missing tools %s, installing %s with %s",
                ", ".join(missing),
                ", ".join(packages),
                self._installer.name,
            )
            if self._installer.install(packages):
                missing = self.missing_tools()
            else:
                logger.error("%s failed to install %s", self._installer.name, packages)

        if missing:
            raise MissingToolError(
                f"Missing required tools: {', '.join(missing)}",
                tools=missing,
            )
