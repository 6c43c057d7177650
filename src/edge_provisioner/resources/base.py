"""Base resource class for edge resources."""

from typing import Annotated, ClassVar

from pydantic import BaseModel, ConfigDict, Field, computed_field

from edge_provisioner.resources.expressions import OutputRef, find_expressions
from edge_provisioner.resources.markers import Compare, ResourceRef, collect_ref_specs

_LabelKey = Annotated[str, Field(pattern=r"^[a-z][a-z0-9_-]{0,62}$")]


class Resource(BaseModel):
    """Base class for all edge resources.

    Resources are pure data - they define the desired state.
    Handlers know how to CRUD resources.
    """

    model_config = ConfigDict(extra="forbid")

    resource_type: ClassVar[str]
    api_kind: ClassVar[str]
    outputs: ClassVar[tuple[str, ...]] = ("id", "self_link")

    name: str = Field(pattern=r"^[a-z]([-a-z0-9_]{0,61}[a-z0-9])?$")
    description: str = ""
    labels: Annotated[dict[_LabelKey, str], Compare("exact")] = Field(default_factory=dict)

    # Lifecycle
    depends_on: list[str] = []

    def references(self) -> list[ResourceRef]:
        """Typed name references declared on this resource."""
        return collect_ref_specs(self)

    def expressions(self) -> list[OutputRef]:
        """``${type.name.attr}`` expressions embedded in attribute values."""
        return find_expressions(self.model_dump(mode="json", exclude={"depends_on"}))

    @classmethod
    def exposes(cls, attribute: str) -> bool:
        """Whether *attribute* can be the target of an output expression."""
        if attribute == "depends_on":
            return False
        return attribute in cls.outputs or attribute in cls.model_fields

    @computed_field
    @property
    def address(self) -> str:
        """Unique address for this resource (e.g., 'url_map.web')."""
        return f"{self.resource_type}.{self.name}"
