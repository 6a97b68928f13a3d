from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, TypedDict, get_args

ResourceKind = Literal[
    "Network",
    "ComputeCluster",
    "ContainerRegistry",
    "SearchDomain",
    "DatabaseCluster",
    "ContainerService",
    "Topic",
    "Queue",
    "Subscription",
]

RESOURCE_KINDS: tuple[str, ...] = get_args(ResourceKind)

GENERAL_STACK_KIND = "general"


@dataclass(frozen=True)
class StackIdentity:
    """Identity of a stack: which app, which environment, which slice of the app."""

    app_name: str
    env_name: str
    stack_kind: str

    @property
    def stack_name(self) -> str:
        return f"{self.app_name}-{self.stack_kind}-{self.env_name}"

    @property
    def parameter_base(self) -> str:
        return f"/{self.env_name}/{self.app_name}/{self.stack_kind}"

    def parameter_path(self, label: str) -> str:
        return f"{self.parameter_base}/{label}"


@dataclass(frozen=True)
class ResourceHandle:
    """Non-owning reference to a declared resource.

    Only ``(stack_name, kind, name)`` take part in equality; ``construct`` is the
    CDK object behind the declaration, carried along so another builder can wire it.
    ``owner`` is the manifest that issued the handle, told when another stack
    references it.
    """

    stack_name: str
    kind: ResourceKind
    name: str
    construct: Any = field(default=None, compare=False, hash=False, repr=False)
    owner: Any = field(default=None, compare=False, hash=False, repr=False)

    def __str__(self) -> str:
        return f"{self.stack_name}/{self.kind}/{self.name}"


@dataclass(frozen=True)
class Resource:
    kind: ResourceKind
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    references: tuple[ResourceHandle, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def references_resource(self, handle: ResourceHandle) -> bool:
        return handle in self.references


@dataclass(frozen=True)
class ParameterEntry:
    path: str
    value: str
    label: str


class ResourceRecord(TypedDict):
    kind: str
    name: str
    attributes: dict[str, Any]
    references: list[str]


class ManifestRecord(TypedDict):
    stack: str
    app: str
    environment: str
    stackKind: str
    resources: list[ResourceRecord]
    parameters: dict[str, Any]
    dependsOn: list[str]
