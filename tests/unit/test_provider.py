"""Unit tests for CloudProvider."""

from pathlib import Path
from unittest.mock import MagicMock

from edge_provisioner.core import CloudProvider, LocalCloud


def test_provider_from_client() -> None:
    """Test creating provider with injected client."""
    mock_client = MagicMock()
    provider = CloudProvider.from_client(mock_client, project="shop")

    assert provider.client is mock_client
    assert provider.project == "shop"


def test_local_backend_client(tmp_path: Path) -> None:
    """The local backend keeps one JSON file per project under data_dir."""
    provider = CloudProvider(project="shop", data_dir=tmp_path)

    client = provider.client
    assert isinstance(client, LocalCloud)
    assert client.path == tmp_path / "shop.json"
    assert provider.client is client


def test_provider_defaults() -> None:
    provider = CloudProvider()
    assert provider.backend == "local"
    assert provider.project == "default"
    assert provider.data_dir == Path(".edge-cloud")
