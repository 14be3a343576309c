"""Generate the POSIX ``sh`` dispatch shim shipped in every distribution tree.

The shim is rendered from ``templates/dispatch.sh.j2`` with the same
:class:`~plugship.models.DispatchConfig` tables that drive
:class:`~plugship.dispatch.resolver.DispatchResolver`, so the Python resolver
and the shipped script cannot drift apart. Table keys become ``case``
patterns verbatim; :class:`DispatchConfig` restricts them to a character
set that is inert in shell context.
"""

from __future__ import annotations

import shlex
import stat
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from plugship import __version__
from plugship.exit_codes import EXIT_DISPATCH_UNRESOLVED
from plugship.models import WINDOWS_FAMILY, DispatchConfig


TEMPLATE_DIR = Path(__file__).parent / "templates"
"""Path to the Jinja2 template directory (``dispatch/templates/``)."""

SHIM_TEMPLATE = "dispatch.sh.j2"

_EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def _create_jinja_env() -> Environment:
    """Create the Jinja2 environment for shim templates.

    Autoescape is off for ``.sh.j2`` (shell, not HTML) and undefined
    variables raise instead of rendering as empty strings.
    """
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(disabled_extensions=("sh.j2",)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    env.filters["shquote"] = shlex.quote
    return env


def render_shim(name: str, tables: Optional[DispatchConfig] = None) -> str:
    """Render the dispatch shim for binary *name*.

    Args:
        name: Logical binary name. The shim looks for
            ``<name>-<os>-<arch>[.exe]`` in its own directory.
        tables: Lookup tables; defaults to :class:`DispatchConfig` defaults.

    Returns:
        The shim source text.
    """
    tables = tables or DispatchConfig()
    template = _create_jinja_env().get_template(SHIM_TEMPLATE)
    return template.render(
        name=name,
        version=__version__,
        os_map=tables.os_map,
        arch_map=tables.arch_map,
        windows_family=sorted(WINDOWS_FAMILY),
        exit_code=EXIT_DISPATCH_UNRESOLVED,
    )


def write_shim(name: str, directory: Path, tables: Optional[DispatchConfig] = None) -> Path:
    """Render the shim for *name* into *directory* and mark it executable.

    Returns:
        Path of the written shim (``directory / name``).
    """
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(render_shim(name, tables), encoding="utf-8", newline="\n")
    path.chmod(path.stat().st_mode | _EXECUTABLE_BITS)
    return path
