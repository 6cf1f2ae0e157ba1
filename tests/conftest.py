"""Shared pytest fixtures and configuration."""

import pytest
from pathlib import Path
from unittest.mock import Mock

from src.apollo_client import ApolloClientError, NamespaceSnapshot
from src.settings import SyncDaemonSettings


def make_snapshot(
    namespace: str, configurations: dict[str, str], app_id: str = "order-service"
) -> NamespaceSnapshot:
    """Build a namespace snapshot as the config service would return it."""
    return NamespaceSnapshot(
        app_id=app_id,
        namespace_name=namespace,
        configurations=configurations,
    )


def make_settings(**overrides) -> SyncDaemonSettings:
    """Create SyncDaemonSettings for testing with default values.

    Args:
        **overrides: Any configuration values to override

    Returns:
        SyncDaemonSettings with test defaults
    """
    defaults = {
        "dir": Path("/tmp/apollo-config-sync-test"),
        "config_service_url": "http://localhost:8080",
        "apps": [
            {
                "app_id": "order-service",
                "namespaces": ["application.properties", "feature.json"],
            }
        ],
    }
    defaults.update(overrides)
    return SyncDaemonSettings.model_validate(defaults)


class FakeApolloClient:
    """Apollo client that replays scripted batches per app."""

    def __init__(self, batches_by_app: dict[str, list]):
        self.batches_by_app = batches_by_app
        self.watch_calls: list[tuple] = []
        self.shutdown = Mock()

    def watch(self, app_id, namespaces, targeting=None):
        self.watch_calls.append((app_id, list(namespaces), targeting))
        yield from self.batches_by_app.get(app_id, [])


@pytest.fixture
def sample_configurations():
    """Sample properties namespace configurations."""
    return {
        "db.url": "jdbc:mysql://h/d",
        "db.pool.size": "10",
        "feature.enabled": "true",
    }


@pytest.fixture
def sample_batch(sample_configurations):
    """Batch with a properties and a json namespace of order-service."""
    return {
        "application.properties": make_snapshot(
            "application.properties", sample_configurations
        ),
        "feature.json": make_snapshot("feature.json", {"content": '{"flag":true}'}),
    }


@pytest.fixture
def upstream_error():
    """Error value for a namespace the config service failed to return."""
    return ApolloClientError(
        "Fetching namespace 'broken' failed with response code: 404",
        namespace="broken",
        status_code=404,
    )


@pytest.fixture
def settings_factory():
    """Factory for SyncDaemonSettings with test defaults."""
    return make_settings


@pytest.fixture
def snapshot_factory():
    """Factory for namespace snapshots."""
    return make_snapshot


@pytest.fixture
def fake_client_factory():
    """Factory for Apollo clients replaying scripted batches per app."""
    return FakeApolloClient
