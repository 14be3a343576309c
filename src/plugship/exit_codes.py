"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to one failure class of the release pipeline and is
referenced by the corresponding :class:`~plugship.exceptions.PlugshipError`
subclass. Release automation can branch on the exit code (for example, to
page an operator on a permission failure but simply re-run on a transient
one) without parsing stderr.

Example::

    $ plugship release --tag v1.0.0
    $ echo $?
    8   # EXIT_PUBLISH_PERMISSION -- the distribution branch is protected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred, or the configuration is invalid."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_TAG_RESOLUTION = 3
"""The release tag could not be resolved or checked out."""

EXIT_TEST_GATE = 4
"""The pre-flight test suite failed; nothing was built."""

EXIT_BUILD_FAILURE = 5
"""A target failed to compile; no artifacts were staged."""

EXIT_STAGING_FAILURE = 6
"""The distribution tree could not be assembled."""

EXIT_PUBLISH_TRANSIENT = 7
"""Publishing failed after exhausting the retry budget."""

EXIT_PUBLISH_PERMISSION = 8
"""Publishing was refused by the remote; operator action is required."""

EXIT_DISPATCH_UNRESOLVED = 127
"""The dispatch shim could not map the host to a prebuilt binary."""
