"""plugship -- Build, stage and publish cross-platform plugin binaries.

This package takes a tagged source snapshot, compiles it into statically
linked binaries for a fixed matrix of OS/architecture targets, packages them
with a platform-dispatch shim and install metadata into a source-free
distribution tree, and force-publishes that tree to a history-less branch
alongside an immutable tagged release.

Typical workflow::

    plugship init                    # scaffold plugship.json + workflow
    plugship release --tag v1.0.0    # gate, build, stage, publish

Modules:
    app: Typer application factory and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: Project configuration and credential resolution.
    registry: The ordered Target Registry.
    dispatch: Runtime dispatch resolver and shim generation.
    build: Build Matrix Executor.
    stage: Release Stager.
    publish: Distribution branch and release publishing.
    pipeline: Tag resolution and the pipeline orchestrator.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
