"""Exception hierarchy for plugship.

All exceptions inherit from :class:`PlugshipError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`plugship.exit_codes`.
The top-level error handler in :func:`plugship.app.main` catches
``PlugshipError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    PlugshipError (exit 1)
    +-- ConfigError                 (exit 1)
    +-- InvalidUsageError           (exit 2)
    +-- TagResolutionError          (exit 3)
    +-- TestGateFailure             (exit 4)
    +-- BuildFailure                (exit 5)
    +-- StagingFailure              (exit 6)
    +-- PublishFailure              (exit 7 transient / 8 permission)
    +-- DispatchResolutionFailure   (exit 127)
"""

from __future__ import annotations

import enum
from typing import Optional

from plugship.exit_codes import (
    EXIT_BUILD_FAILURE,
    EXIT_DISPATCH_UNRESOLVED,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_PUBLISH_PERMISSION,
    EXIT_PUBLISH_TRANSIENT,
    EXIT_STAGING_FAILURE,
    EXIT_TAG_RESOLUTION,
    EXIT_TEST_GATE,
)


class PlugshipError(Exception):
    """Base exception for all plugship errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`plugship.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(PlugshipError):
    """Raised for configuration problems (invalid project file, bad credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE


class InvalidUsageError(PlugshipError):
    """Raised for invalid CLI arguments or conflicting trigger inputs."""

    exit_code = EXIT_INVALID_USAGE


class TagResolutionError(PlugshipError):
    """Raised when the release tag is malformed, absent, or cannot be checked out."""

    exit_code = EXIT_TAG_RESOLUTION


class TestGateFailure(PlugshipError):
    """Raised when the pre-flight test command fails. No build is attempted."""

    __test__ = False  # keep pytest from collecting this as a test class

    exit_code = EXIT_TEST_GATE


class BuildFailure(PlugshipError):
    """Raised when compiling a single target fails.

    Attributes:
        target: Canonical suffix of the failing target (e.g. ``linux-arm64``).
        cause: Short description of what went wrong (compiler stderr tail,
            timeout, missing output).
    """

    exit_code = EXIT_BUILD_FAILURE

    def __init__(self, target: str, cause: str):
        super().__init__(f"Build failed for {target}: {cause}")
        self.target = target
        self.cause = cause


class StagingFailure(PlugshipError):
    """Raised when the distribution tree cannot be assembled.

    Attributes:
        missing: Paths of required resources that were absent or refused.
    """

    exit_code = EXIT_STAGING_FAILURE

    def __init__(self, message: str, missing: Optional[list[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])


class PublishFailureKind(str, enum.Enum):
    """Whether a publish failure may be retried."""

    TRANSIENT = "transient"
    PERMISSION = "permission"


class PublishFailure(PlugshipError):
    """Raised when writing the distribution branch or the release fails.

    Permission failures (protected branch, rejected credentials) are never
    retried and map to :data:`EXIT_PUBLISH_PERMISSION`. Transient failures
    are retried by the caller and surface here only once the retry budget
    is spent.

    Attributes:
        kind: :class:`PublishFailureKind` classification.
    """

    def __init__(self, message: str, kind: PublishFailureKind = PublishFailureKind.TRANSIENT):
        exit_code = (
            EXIT_PUBLISH_PERMISSION
            if kind == PublishFailureKind.PERMISSION
            else EXIT_PUBLISH_TRANSIENT
        )
        super().__init__(message, exit_code=exit_code)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        """``True`` for transient failures."""
        return self.kind == PublishFailureKind.TRANSIENT


class DispatchResolutionFailure(PlugshipError):
    """Raised when a host platform cannot be mapped to a prebuilt binary.

    Attributes:
        kernel_name: Raw kernel-name report (``uname -s``).
        machine: Raw machine-hardware report (``uname -m``).
        os_token: Canonical OS token, or ``None`` if unmapped.
        arch_token: Canonical architecture token, or ``None`` if unmapped.
        expected: The artifact path (or path pattern) that was looked for.
    """

    exit_code = EXIT_DISPATCH_UNRESOLVED

    def __init__(
        self,
        kernel_name: str,
        machine: str,
        os_token: Optional[str],
        arch_token: Optional[str],
        expected: str,
    ):
        os_part = os_token or f"unmapped ({kernel_name!r})"
        arch_part = arch_token or f"unmapped ({machine!r})"
        super().__init__(
            f"Unsupported platform: os={os_part}, arch={arch_part}; expected binary: {expected}"
        )
        self.kernel_name = kernel_name
        self.machine = machine
        self.os_token = os_token
        self.arch_token = arch_token
        self.expected = expected
