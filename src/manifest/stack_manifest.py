from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any

from .errors import ConfigurationError, ManifestValidationError
from .resource_types import (
    RESOURCE_KINDS,
    ManifestRecord,
    ParameterEntry,
    Resource,
    ResourceHandle,
    ResourceKind,
    ResourceRecord,
    StackIdentity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Manifest:
    """Finalized, read-only view of one stack's declarations."""

    stack: StackIdentity
    resources: tuple[Resource, ...]
    parameters: Mapping[str, str]
    references: tuple[ResourceHandle, ...]

    @property
    def stack_name(self) -> str:
        return self.stack.stack_name

    @property
    def resource_count(self) -> int:
        return len(self.resources)

    @property
    def dependencies(self) -> tuple[str, ...]:
        """Names of the upstream stacks this manifest references, in first-use order."""
        seen: dict[str, None] = {}
        for ref in self.references:
            seen.setdefault(ref.stack_name, None)
        return tuple(seen)

    def declares(self, handle: ResourceHandle) -> bool:
        if handle.stack_name != self.stack_name:
            return False
        return any(r.kind == handle.kind and r.name == handle.name for r in self.resources)

    def to_dict(self, resolver: Callable[[Any], Any] | None = None) -> ManifestRecord:
        """Export as plain data.

        ``resolver`` turns CDK tokens into something printable, e.g. ``Stack.resolve``.
        """
        resolve = resolver or (lambda value: value)
        resources: list[ResourceRecord] = [
            {
                "kind": r.kind,
                "name": r.name,
                "attributes": dict(r.attributes),
                "references": [str(ref) for ref in r.references],
            }
            for r in self.resources
        ]
        return {
            "stack": self.stack_name,
            "app": self.stack.app_name,
            "environment": self.stack.env_name,
            "stackKind": self.stack.stack_kind,
            "resources": resources,
            "parameters": {path: resolve(value) for path, value in self.parameters.items()},
            "dependsOn": list(self.dependencies),
        }

    def to_json(self, resolver: Callable[[Any], Any] | None = None, indent: int = 2) -> str:
        return json.dumps(self.to_dict(resolver), indent=indent, default=str)


class StackManifest:
    """Append-only accumulator of a stack's resources, parameters and references."""

    def __init__(self, stack: StackIdentity) -> None:
        self.stack = stack
        self._resources: list[Resource] = []
        self._parameters: list[ParameterEntry] = []
        self._references: list[ResourceHandle] = []
        self._referenced_by: dict[str, list[str]] = {}
        self._finalized: Manifest | None = None

    @property
    def stack_name(self) -> str:
        return self.stack.stack_name

    @property
    def resources(self) -> tuple[Resource, ...]:
        return tuple(self._resources)

    @property
    def parameters(self) -> tuple[ParameterEntry, ...]:
        return tuple(self._parameters)

    @property
    def is_finalized(self) -> bool:
        return self._finalized is not None

    def handle_for(self, resource: Resource, construct: Any = None) -> ResourceHandle:
        return ResourceHandle(self.stack_name, resource.kind, resource.name, construct, owner=self)

    def get(self, name: str) -> Resource | None:
        for resource in self._resources:
            if resource.name == name:
                return resource
        return None

    def latest(self, kind: ResourceKind) -> Resource | None:
        for resource in reversed(self._resources):
            if resource.kind == kind:
                return resource
        return None

    def declare(
        self,
        kind: ResourceKind,
        name: str,
        attributes: Mapping[str, Any] | None = None,
        references: Iterable[ResourceHandle] = (),
        construct: Any = None,
    ) -> ResourceHandle:
        self._ensure_open()
        if kind not in RESOURCE_KINDS:
            raise ConfigurationError(f"Unknown resource kind '{kind}'")
        if self.get(name) is not None:
            raise ConfigurationError(
                f"Resource '{name}' is already declared in stack '{self.stack_name}'")

        refs = tuple(references)
        resource = Resource(kind=kind, name=name, attributes=attributes or {}, references=refs)
        self._resources.append(resource)
        for ref in refs:
            if ref.stack_name != self.stack_name and ref not in self._references:
                self._references.append(ref)
                if isinstance(ref.owner, StackManifest):
                    ref.owner._note_reference(ref.name, self.stack_name)

        logger.info("Declared %s '%s' in %s", kind, name, self.stack_name)
        return self.handle_for(resource, construct)

    def amend(self, name: str, **attributes: Any) -> Resource:
        """Replace attributes of an earlier declaration, keeping its position."""
        self._ensure_open()
        resource = self.get(name)
        if resource is None:
            raise ConfigurationError(
                f"Resource '{name}' is not declared in stack '{self.stack_name}'")

        handle = self.handle_for(resource)
        index = self._resources.index(resource)
        for later in self._resources[index + 1:]:
            if later.references_resource(handle):
                raise ConfigurationError(
                    f"Resource '{name}' is already referenced by '{later.name}' and can no longer change")
        if name in self._referenced_by:
            raise ConfigurationError(
                f"Resource '{name}' is already referenced by stack '{self._referenced_by[name][0]}' "
                "and can no longer change")

        updated = replace(resource, attributes={**resource.attributes, **attributes})
        self._resources[index] = updated
        return updated

    def publish(self, label: str, value: str) -> ParameterEntry:
        self._ensure_open()
        entry = ParameterEntry(path=self.stack.parameter_path(label), value=value, label=label)
        self._parameters.append(entry)
        logger.debug("Published parameter %s", entry.path)
        return entry

    def finalize(self, upstream: Iterable[Manifest] = ()) -> Manifest:
        """Validate and freeze.

        Raises ManifestValidationError listing every duplicate parameter path and
        every cross-stack reference not declared by one of ``upstream``.
        """
        self._ensure_open()
        upstream = tuple(upstream)
        violations: list[str] = []

        counts = Counter(entry.path for entry in self._parameters)
        for path, count in counts.items():
            if count > 1:
                violations.append(f"parameter path '{path}' is published {count} times")

        for manifest in upstream:
            for path in counts:
                if path in manifest.parameters:
                    violations.append(
                        f"parameter path '{path}' is already published by stack '{manifest.stack_name}'")

        for ref in self._references:
            if not any(m.declares(ref) for m in upstream):
                violations.append(
                    f"reference to {ref.kind} '{ref.name}' in stack '{ref.stack_name}' "
                    "is not declared by any upstream stack")

        if violations:
            raise ManifestValidationError(self.stack_name, violations)

        self._finalized = Manifest(
            stack=self.stack,
            resources=tuple(self._resources),
            parameters=MappingProxyType({e.path: e.value for e in self._parameters}),
            references=tuple(self._references),
        )
        logger.info(
            "Finalized %s with %d resource(s) and %d parameter(s)",
            self.stack_name, len(self._resources), len(self._parameters),
        )
        return self._finalized

    def _note_reference(self, name: str, stack_name: str) -> None:
        stacks = self._referenced_by.setdefault(name, [])
        if stack_name not in stacks:
            stacks.append(stack_name)

    def _ensure_open(self) -> None:
        if self._finalized is not None:
            raise ConfigurationError(f"Manifest for stack '{self.stack_name}' is already finalized")
