from __future__ import annotations

from collections.abc import Iterable


class StackDefinitionError(Exception):
    """Base class for errors raised while defining stacks."""


class ConfigurationError(StackDefinitionError):
    """Required input is missing and has no default, or a precondition is broken."""


class ManifestValidationError(StackDefinitionError):
    """A manifest failed validation at finalize time.

    Carries every violation found, not just the first one.
    """

    def __init__(self, stack_name: str, violations: Iterable[str]) -> None:
        self.stack_name = stack_name
        self.violations: list[str] = list(violations)
        details = "\n".join(f"  - {v}" for v in self.violations)
        super().__init__(
            f"Manifest for stack '{stack_name}' has {len(self.violations)} violation(s):\n{details}",
        )
