"""Unit tests for IdentityReconciler."""

from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest

from cihost.bootstrap.identity import IdentityReconciler, rewrite_jenkins_url
from cihost.bootstrap.state import BootstrapState
from cihost.config import BootstrapConfig
from cihost.infra.metadata import InstanceMetadataClient

LOCATION_XML = """<?xml version='1.1' encoding='UTF-8'?>
<jenkins.model.JenkinsLocationConfiguration>
  <adminAddress>ci@example.com</adminAddress>
  <jenkinsUrl>http://10.0.0.5:8080/</jenkinsUrl>
</jenkins.model.JenkinsLocationConfiguration>
"""


def test_rewrite_replaces_only_url() -> None:
    document, found = rewrite_jenkins_url(LOCATION_XML, "http://203.0.113.10:8080/")

    assert found is True
    assert "<jenkinsUrl>http://203.0.113.10:8080/</jenkinsUrl>" in document
    assert "<adminAddress>ci@example.com</adminAddress>" in document
    assert "10.0.0.5" not in document


def test_rewrite_without_element() -> None:
    document, found = rewrite_jenkins_url("<x/>", "http://a/")
    assert found is False
    assert document == "<x/>"


class TestIdentityReconciler:
    @pytest.fixture
    def metadata(self) -> AsyncMock:
        client = AsyncMock(spec=InstanceMetadataClient)
        client.public_ipv4 = AsyncMock(return_value="203.0.113.10")
        return client

    @pytest.fixture
    def location_file(self, config: BootstrapConfig) -> Path:
        state_dir = config.workload.state_dir
        state_dir.mkdir(parents=True, exist_ok=True)
        path = state_dir / config.workload.location_config_file
        path.write_text(LOCATION_XML)
        return path

    async def test_rewrites_restored_url(
        self, config: BootstrapConfig, metadata: AsyncMock, location_file: Path
    ) -> None:
        reconciler = IdentityReconciler(config, metadata)

        url = await reconciler.reconcile(BootstrapState(restore_occurred=True))

        assert url == "http://203.0.113.10:8080/"
        assert "<jenkinsUrl>http://203.0.113.10:8080/</jenkinsUrl>" in location_file.read_text()

    async def test_fresh_start_untouched(
        self, config: BootstrapConfig, metadata: AsyncMock, location_file: Path
    ) -> None:
        reconciler = IdentityReconciler(config, metadata)

        assert await reconciler.reconcile(BootstrapState(restore_occurred=False)) is None
        assert location_file.read_text() == LOCATION_XML
        metadata.public_ipv4.assert_not_awaited()

    async def test_missing_file_skipped(self, config: BootstrapConfig, metadata: AsyncMock) -> None:
        reconciler = IdentityReconciler(config, metadata)
        assert await reconciler.reconcile(BootstrapState(restore_occurred=True)) is None

    async def test_metadata_failure_not_fatal(
        self, config: BootstrapConfig, metadata: AsyncMock, location_file: Path
    ) -> None:
        metadata.public_ipv4.side_effect = httpx.ConnectTimeout("timed out")
        reconciler = IdentityReconciler(config, metadata)

        assert await reconciler.reconcile(BootstrapState(restore_occurred=True)) is None
        assert location_file.read_text() == LOCATION_XML
