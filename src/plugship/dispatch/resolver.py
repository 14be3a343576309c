"""Platform dispatch resolution -- host platform to prebuilt artifact.

This is the executable reference for the logic embedded in every generated
dispatch shim (see :mod:`plugship.dispatch.shim`). Resolution is a small,
fail-closed state machine::

    START -> OS_DETECTED -> ARCH_DETECTED -> TARGET_COMPOSED -> RESOLVED
      |           |               |                 |
      +-----------+---------------+-----------------+--> UNRESOLVED

1. The kernel-name report is lower-cased and matched against the ordered
   ``os_map`` glob table. No match means ``UNRESOLVED``.
2. The machine-hardware report goes through ``arch_map`` the same way.
3. The artifact path is composed from the program name, both tokens and the
   target's extension, anchored to the shim's absolute directory.
4. If that file exists and is executable the resolution is ``RESOLVED``.

:meth:`DispatchResolver.invoke` replaces the current process with the
resolved artifact, so stdio and the exit status pass through untouched. On
failure it prints a diagnostic naming the unmatched tokens and the expected
path, and returns :data:`~plugship.exit_codes.EXIT_DISPATCH_UNRESOLVED`.
"""

from __future__ import annotations

import enum
import fnmatch
import os
import platform
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, NoReturn, Optional, Sequence, TextIO

from plugship.exceptions import DispatchResolutionFailure
from plugship.exit_codes import EXIT_DISPATCH_UNRESOLVED
from plugship.models import DispatchConfig, Target


class ResolutionState(str, enum.Enum):
    """States of the dispatch state machine."""

    START = "start"
    OS_DETECTED = "os_detected"
    ARCH_DETECTED = "arch_detected"
    TARGET_COMPOSED = "target_composed"
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


@dataclass
class Resolution:
    """Outcome of one resolution attempt.

    Attributes:
        kernel_name: Raw kernel-name report.
        machine: Raw machine-hardware report.
        os_token: Canonical OS token, or ``None`` if unmapped.
        arch_token: Canonical architecture token, or ``None`` if unmapped.
        path: Composed artifact path, or ``None`` if composition never happened.
        states: Every state visited, in order.
    """

    kernel_name: str
    machine: str
    os_token: Optional[str] = None
    arch_token: Optional[str] = None
    path: Optional[Path] = None
    states: list[ResolutionState] = field(default_factory=lambda: [ResolutionState.START])

    @property
    def state(self) -> ResolutionState:
        return self.states[-1]

    @property
    def resolved(self) -> bool:
        return self.state == ResolutionState.RESOLVED

    @property
    def target(self) -> Optional[Target]:
        if self.os_token is None or self.arch_token is None:
            return None
        return Target(os=self.os_token, arch=self.arch_token)


def _match(table: dict[str, str], report: str) -> Optional[str]:
    value = report.strip().lower()
    if not value:
        return None
    for pattern, token in table.items():
        if fnmatch.fnmatchcase(value, pattern):
            return token
    return None


def host_reports() -> tuple[str, str]:
    """Return the host's ``(kernel-name, machine-hardware)`` reports."""
    uname = platform.uname()
    return uname.system, uname.machine


class DispatchResolver:
    """Maps host platform reports to the artifact for one logical binary.

    Args:
        name: Logical binary name (the shim's own file name).
        directory: Directory holding the artifacts. Resolved to an absolute
            path so that dispatch works from any working directory.
        tables: The ``os_map`` / ``arch_map`` lookup tables.
    """

    def __init__(self, name: str, directory: Path, tables: Optional[DispatchConfig] = None) -> None:
        self.name = name
        self.directory = Path(directory).resolve()
        self.tables = tables or DispatchConfig()

    def detect_os(self, kernel_name: str) -> Optional[str]:
        """Map a kernel-name report to a canonical OS token."""
        return _match(self.tables.os_map, kernel_name)

    def detect_arch(self, machine: str) -> Optional[str]:
        """Map a machine-hardware report to a canonical architecture token."""
        return _match(self.tables.arch_map, machine)

    def compose(self, os_token: str, arch_token: str) -> Path:
        """Return the absolute artifact path for the given tokens."""
        target = Target(os=os_token, arch=arch_token)
        return self.directory / target.artifact_name(self.name)

    def expected_pattern(self) -> str:
        """Path pattern shown when a token could not be mapped."""
        return str(self.directory / f"{self.name}-<os>-<arch>[.exe]")

    def resolve(
        self,
        kernel_name: Optional[str] = None,
        machine: Optional[str] = None,
    ) -> Resolution:
        """Run the state machine. Host reports are read when not supplied."""
        if kernel_name is None or machine is None:
            host_kernel, host_machine = host_reports()
            kernel_name = host_kernel if kernel_name is None else kernel_name
            machine = host_machine if machine is None else machine

        res = Resolution(kernel_name=kernel_name, machine=machine)

        res.os_token = self.detect_os(kernel_name)
        if res.os_token is None:
            res.states.append(ResolutionState.UNRESOLVED)
            return res
        res.states.append(ResolutionState.OS_DETECTED)

        res.arch_token = self.detect_arch(machine)
        if res.arch_token is None:
            res.states.append(ResolutionState.UNRESOLVED)
            return res
        res.states.append(ResolutionState.ARCH_DETECTED)

        res.path = self.compose(res.os_token, res.arch_token)
        res.states.append(ResolutionState.TARGET_COMPOSED)

        if res.path.is_file() and os.access(res.path, os.X_OK):
            res.states.append(ResolutionState.RESOLVED)
        else:
            res.states.append(ResolutionState.UNRESOLVED)
        return res

    def failure(self, res: Resolution) -> DispatchResolutionFailure:
        """Build the diagnostic exception for an unresolved *res*."""
        expected = str(res.path) if res.path is not None else self.expected_pattern()
        return DispatchResolutionFailure(
            kernel_name=res.kernel_name,
            machine=res.machine,
            os_token=res.os_token,
            arch_token=res.arch_token,
            expected=expected,
        )

    def target_for(self, kernel_name: str, machine: str) -> Target:
        """Pure mapping from platform reports to a :class:`Target`.

        Does not look at the filesystem.

        Raises:
            DispatchResolutionFailure: If either report is unmapped.
        """
        os_token = self.detect_os(kernel_name)
        arch_token = self.detect_arch(machine)
        if os_token is None or arch_token is None:
            res = Resolution(
                kernel_name=kernel_name,
                machine=machine,
                os_token=os_token,
                arch_token=arch_token,
            )
            raise self.failure(res)
        return Target(os=os_token, arch=arch_token)

    def invoke(
        self,
        args: Sequence[str],
        kernel_name: Optional[str] = None,
        machine: Optional[str] = None,
        stderr: Optional[TextIO] = None,
        execv: Callable[[str, list[str]], NoReturn] = os.execv,
    ) -> int:
        """Replace the current process with the resolved artifact.

        Never returns on success. On resolution failure a diagnostic is
        written to *stderr* and :data:`EXIT_DISPATCH_UNRESOLVED` is returned.
        """
        res = self.resolve(kernel_name, machine)
        if not res.resolved:
            stream = stderr if stderr is not None else sys.stderr
            stream.write(f"{self.name}: {self.failure(res)}\n")
            stream.flush()
            return EXIT_DISPATCH_UNRESOLVED

        assert res.path is not None
        sys.stdout.flush()
        sys.stderr.flush()
        execv(str(res.path), [str(res.path), *args])
