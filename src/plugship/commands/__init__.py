"""Built-in CLI sub-commands for plugship.

* :mod:`~plugship.commands.release` -- run the release pipeline for a tag.
* :mod:`~plugship.commands.targets` -- list the target registry.
* :mod:`~plugship.commands.shim` -- render a dispatch shim or trace a
  platform resolution.
* :mod:`~plugship.commands.verify` -- check a distribution tree against its
  checksum manifest.
* :mod:`~plugship.commands.init` -- scaffold a project config and workflow.
* :mod:`~plugship.commands.config` -- show the effective configuration.

Each module either exports a :class:`typer.Typer` sub-application (for
multi-command groups like ``shim`` and ``config``) or a plain callback
function registered directly on the root app.
"""
