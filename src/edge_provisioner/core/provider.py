"""Cloud provider - connection configuration for the provider API."""

from functools import cached_property
from pathlib import Path
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict

from edge_provisioner.core.cloud import CloudClient, LocalCloud


class CloudProvider(BaseModel):
    """Connection configuration for the cloud provider API.

    The ``local`` backend keeps objects in a JSON file under ``data_dir``.
    Other backends plug in through :meth:`from_client`.

    Examples:
        # File-backed local cloud
        provider = CloudProvider(project="edge-prod", data_dir=Path(".edge-cloud"))

        # Any object implementing CloudClient (tests, custom backends)
        provider = CloudProvider.from_client(client, project="edge-prod")
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    backend: Literal["local"] = "local"
    project: str = "default"
    data_dir: Path = Path(".edge-cloud")

    # Injected client (for custom backends / testing)
    _injected_client: CloudClient | None = None

    @classmethod
    def from_client(cls, client: CloudClient, *, project: str = "default") -> Self:
        """Create a provider with an injected client."""
        provider = cls.model_construct(project=project)
        provider._injected_client = client
        return provider

    @cached_property
    def client(self) -> CloudClient:
        """Get the provider API client."""
        if self._injected_client is not None:
            return self._injected_client

        return LocalCloud(self.data_dir, self.project)
