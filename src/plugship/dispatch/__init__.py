"""Platform dispatch -- runtime resolution of the right prebuilt binary.

Every distribution tree carries one dispatch shim per logical binary. The
shim reads the host's kernel-name and machine-hardware reports, maps them
through explicit tables, and execs ``<name>-<os>-<arch>[.exe]`` from its own
directory, refusing (never guessing) on anything it does not recognise.

Public API:

* :class:`DispatchResolver` -- the state machine as a Python library.
* :func:`render_shim` / :func:`write_shim` -- generate the ``sh`` shim.
"""

from plugship.dispatch.resolver import DispatchResolver, Resolution, ResolutionState
from plugship.dispatch.shim import render_shim, write_shim

__all__ = [
    "DispatchResolver",
    "Resolution",
    "ResolutionState",
    "render_shim",
    "write_shim",
]
