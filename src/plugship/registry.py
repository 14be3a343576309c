"""Target Registry -- the ordered table of (OS, architecture) build targets.

The registry is populated from the ``targets`` list of
:class:`~plugship.models.ReleaseConfig`; adding a platform is a configuration
change and never touches build or dispatch logic. Canonical names are derived
by :class:`~plugship.models.Target` itself (``<os>-<arch>``, ``.exe`` iff the
OS is Windows-family), so the registry is a pure lookup with no side effects.
"""

from __future__ import annotations

from typing import Iterable, Iterator

from plugship.exceptions import ConfigError
from plugship.models import ReleaseConfig, Target


class TargetRegistry:
    """Ordered, duplicate-free collection of :class:`Target` entries.

    Example::

        registry = TargetRegistry.from_config(config)
        for target in registry.list_targets():
            print(target.artifact_name("tool"))
    """

    def __init__(self, targets: Iterable[Target]) -> None:
        self._targets: list[Target] = []
        self._by_suffix: dict[str, Target] = {}
        for target in targets:
            if target.suffix in self._by_suffix:
                raise ConfigError(f"Duplicate target in registry: {target.suffix}")
            self._targets.append(target)
            self._by_suffix[target.suffix] = target
        if not self._targets:
            raise ConfigError("Target registry is empty")

    @classmethod
    def from_config(cls, config: ReleaseConfig) -> TargetRegistry:
        return cls(config.targets)

    def list_targets(self) -> list[Target]:
        """Return the targets in declaration order."""
        return list(self._targets)

    def get(self, suffix: str) -> Target:
        """Look up a target by its canonical suffix (e.g. ``linux-arm64``).

        Raises:
            ConfigError: If no registered target has that suffix.
        """
        try:
            return self._by_suffix[suffix]
        except KeyError:
            known = ", ".join(self._by_suffix)
            raise ConfigError(f"Unknown target '{suffix}' (registered: {known})") from None

    def artifact_names(self, name: str) -> list[str]:
        """Return the artifact filename for *name* on every target, in order."""
        return [t.artifact_name(name) for t in self._targets]

    def __iter__(self) -> Iterator[Target]:
        return iter(self._targets)

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, item: object) -> bool:
        return isinstance(item, Target) and self._by_suffix.get(item.suffix) == item


def parse_target(value: str) -> Target:
    """Parse an ``<os>-<arch>`` string into a :class:`Target`.

    Raises:
        ConfigError: If *value* is not of the form ``os-arch``.
    """
    os_token, sep, arch_token = value.strip().lower().partition("-")
    if not sep or not os_token or not arch_token:
        raise ConfigError(f"Invalid target '{value}', expected <os>-<arch>")
    try:
        return Target(os=os_token, arch=arch_token)
    except ValueError as exc:
        raise ConfigError(f"Invalid target '{value}': {exc}") from exc
