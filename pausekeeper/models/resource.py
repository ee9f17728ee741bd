"""
Models for managed resources.

A managed resource is kept as a generic JSON document (the Kubernetes
"unstructured" shape) so the engine works for any resource kind.
ManagedResource only exposes the regions the pause logic needs.
"""

import copy
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pausekeeper.models.constants import ConditionStatus, ConditionType


class WatchedResource(BaseModel):
    """A resource kind whose instances are evaluated for pausing."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    group: str = Field(description="API group, empty for the core group")
    version: str = Field(description="API version, e.g. v1beta1")
    plural: str = Field(description="Lower-case plural resource name used in API paths")
    kind: str = Field(default="", description="Kind, used for logging only")
    namespace: Optional[str] = Field(
        default=None,
        description="Restrict to one namespace; None for cluster-scoped kinds or all namespaces"
    )

    @property
    def api_version(self) -> str:
        """apiVersion string as it appears in documents."""
        return f"{self.group}/{self.version}" if self.group else self.version

    def identity(self, name: str, namespace: Optional[str] = None) -> 'ResourceIdentity':
        """Build the identity of one instance of this kind."""
        return ResourceIdentity(
            group=self.group,
            version=self.version,
            plural=self.plural,
            kind=self.kind,
            namespace=namespace if namespace is not None else self.namespace,
            name=name,
        )


class ResourceIdentity(BaseModel):
    """Identity of a single resource; hashable so it can key work queues."""

    model_config = ConfigDict(frozen=True)

    group: str
    version: str
    plural: str
    kind: str = ""
    namespace: Optional[str] = None
    name: str

    @property
    def key(self) -> str:
        """Stable string form used in logs and error context."""
        scope = f"{self.namespace}/{self.name}" if self.namespace else self.name
        prefix = f"{self.group}/{self.version}" if self.group else self.version
        return f"{prefix}/{self.plural}:{scope}"

    def __str__(self) -> str:
        return self.key


class Condition(BaseModel):
    """
    One entry of status.conditions.

    status:
      conditions:
      - lastTransitionTime: "2022-07-22T10:54:18Z"
        reason: Available
        status: "True"
        type: Ready
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = ""
    status: str = ""
    reason: Optional[str] = None
    message: Optional[str] = None
    last_transition_time: Optional[str] = Field(default=None, alias="lastTransitionTime")

    @property
    def is_true(self) -> bool:
        """Only an explicit True status is affirmative."""
        return self.status == ConditionStatus.TRUE.value


class ManagedResource:
    """
    Thin accessor over an unstructured resource document.

    The wrapped dict is mutated in place by the setters; use deep_copy()
    before changing a document that is shared.
    """

    def __init__(self, obj: Dict[str, Any]):
        self.object = obj

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.object.get("metadata") or {}

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.get("namespace") or None

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def api_version(self) -> str:
        return self.object.get("apiVersion", "")

    @property
    def kind(self) -> str:
        return self.object.get("kind", "")

    def get_annotations(self) -> Dict[str, str]:
        """Return a copy of the annotation map (empty if absent)."""
        return dict(self.metadata.get("annotations") or {})

    def set_annotations(self, annotations: Optional[Dict[str, str]]) -> None:
        """Replace the annotation map; None removes the field entirely."""
        self._set_metadata_map("annotations", annotations)

    def get_annotation(self, key: str) -> Optional[str]:
        return (self.metadata.get("annotations") or {}).get(key)

    def get_labels(self) -> Dict[str, str]:
        """Return a copy of the label map (empty if absent)."""
        return dict(self.metadata.get("labels") or {})

    def set_labels(self, labels: Optional[Dict[str, str]]) -> None:
        """Replace the label map; None removes the field entirely."""
        self._set_metadata_map("labels", labels)

    @property
    def spec(self) -> Optional[Dict[str, Any]]:
        """Desired-state region, None when the document has none."""
        return self.object.get("spec")

    @property
    def deletion_timestamp(self) -> Optional[str]:
        return self.metadata.get("deletionTimestamp") or None

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def get_conditions(self) -> List[Condition]:
        """
        Parse status.conditions.

        Raises:
            ValueError: If status.conditions is not a list of condition objects
        """
        status = self.object.get("status") or {}
        raw_conditions = status.get("conditions")
        if raw_conditions is None:
            return []
        if not isinstance(raw_conditions, list):
            raise ValueError(f"status.conditions is {type(raw_conditions).__name__}, expected list")
        return [Condition.model_validate(raw) for raw in raw_conditions]

    def get_condition(self, condition_type: ConditionType) -> Optional[Condition]:
        """Return the first condition of the given type, or None."""
        for condition in self.get_conditions():
            if condition.type == condition_type.value:
                return condition
        return None

    def deep_copy(self) -> 'ManagedResource':
        return ManagedResource(copy.deepcopy(self.object))

    def to_dict(self) -> Dict[str, Any]:
        return self.object

    def _set_metadata_map(self, field: str, value: Optional[Dict[str, str]]) -> None:
        metadata = self.object.get("metadata")
        if metadata is None:
            metadata = self.object["metadata"] = {}
        if value is None:
            metadata.pop(field, None)
        else:
            metadata[field] = dict(value)

    def __repr__(self) -> str:
        return f"ManagedResource(kind={self.kind!r}, namespace={self.namespace!r}, name={self.name!r})"


class ResourceListing(BaseModel):
    """Result of listing one watched kind."""

    identities: List[ResourceIdentity] = Field(default_factory=list)
    resource_version: Optional[str] = Field(
        default=None,
        description="Collection resourceVersion to start a watch from"
    )
