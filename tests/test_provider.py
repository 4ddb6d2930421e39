"""Unit tests for modules/provider.py.

The OCM client is mocked; every test checks both the outcome and the exact
requests that reached the provider.
"""

import random
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from lib.config import ClusterConfig
from lib.exceptions import (
    BuildError,
    MalformedResponseError,
    ProviderError,
    RetryExhaustedError,
    VerificationError,
)
from lib.ocm_client import OCMClient, OCMError, OCMResponse
from lib.retry import RetryPolicy
from modules.provider import OCMProvider

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _ok(body=None, status=200):
    return OCMResponse(status=status, body=body if body is not None else {})


def _err(status=500, reason="boom"):
    return OCMResponse(status=status, body={}, error=OCMError(status=status, reason=reason))


def _cluster(cluster_id="abc", compute=3, expiration="2024-01-01T00:00:00Z", **extra):
    record = {
        "id": cluster_id,
        "name": "e2e-1",
        "state": "ready",
        "nodes": {"compute": compute},
        "expiration_timestamp": expiration,
    }
    record.update(extra)
    return record


@pytest.fixture
def ocm():
    client = Mock(spec=OCMClient)
    client.list_cluster_addons.return_value = _ok({"items": []})
    return client


@pytest.fixture
def provider(ocm):
    return OCMProvider(
        ocm,
        retry_policy=RetryPolicy(attempts=3, delay=0),
        rng=random.Random(7),
        clock=lambda: NOW,
    )


@pytest.mark.unit
class TestCreateCluster:
    """Tests for cluster creation."""

    def test_multi_az_sets_compute_nodes(self, provider, ocm):
        ocm.create_cluster.return_value = _ok({"id": "abc"}, status=201)
        config = ClusterConfig(region="us-east-1", multi_az=True, user_override="tester")

        result = provider.create_cluster("e2e-1", config)

        assert result.cluster_id == "abc"
        assert result.region == "us-east-1"
        body = ocm.create_cluster.call_args[0][0]
        assert body["name"] == "e2e-1"
        assert body["multi_az"] is True
        assert body["nodes"]["compute"] == 9
        assert body["region"] == {"id": "us-east-1"}
        assert body["flavour"] == {"id": "osd-4"}
        assert body["properties"] == {"MadeByOSDe2e": "true", "OwnedBy": "tester"}
        ocm.list_regions.assert_not_called()

    def test_single_az_has_no_node_count(self, provider, ocm):
        ocm.create_cluster.return_value = _ok({"id": "abc"})

        provider.create_cluster("e2e-1", ClusterConfig(region="us-east-1", user_override="tester"))

        assert "nodes" not in ocm.create_cluster.call_args[0][0]

    def test_random_region_picks_only_enabled_region(self, provider, ocm):
        regions = [
            {"id": "us-east-1", "enabled": False},
            {"id": "eu-west-1", "enabled": True},
            {"id": "ap-south-1", "enabled": False},
        ]
        ocm.list_regions.return_value = _ok({"items": regions})
        ocm.create_cluster.return_value = _ok({"id": "abc"})
        config = ClusterConfig(user_override="tester")

        result = provider.create_cluster("e2e-1", config)

        assert result.region == "eu-west-1"
        assert result.config.region == "eu-west-1"
        assert config.region == "random"
        assert ocm.create_cluster.call_args[0][0]["region"] == {"id": "eu-west-1"}
        ocm.list_regions.assert_called_once_with("aws")

    def test_random_region_draws_are_bounded(self, ocm):
        regions = [{"id": f"r{i}", "enabled": i == 4} for i in range(5)]
        ocm.list_regions.return_value = _ok({"items": regions})
        rng = Mock(wraps=random.Random(1))
        provider = OCMProvider(ocm, RetryPolicy(attempts=1, delay=0), rng=rng)

        resolved = provider.resolve_region(ClusterConfig())

        assert resolved.region == "r4"
        assert rng.randrange.call_count <= len(regions) ** 2

    def test_no_enabled_region(self, provider, ocm):
        ocm.list_regions.return_value = _ok({"items": [{"id": "us-east-1", "enabled": False}]})

        with pytest.raises(BuildError, match="No enabled region"):
            provider.create_cluster("e2e-1", ClusterConfig(user_override="tester"))

        ocm.create_cluster.assert_not_called()

    def test_no_regions(self, provider, ocm):
        ocm.list_regions.return_value = _ok({"items": []})

        with pytest.raises(BuildError):
            provider.resolve_region(ClusterConfig())

    def test_expiry_and_version(self, provider, ocm):
        ocm.create_cluster.return_value = _ok({"id": "abc"})
        config = ClusterConfig(
            region="us-east-1",
            version="openshift-v4.14.1",
            expiry_minutes=90,
            addon_ids_at_creation=("dvo",),
            compute_machine_type="m5.xlarge",
            user_override="tester",
        )

        provider.create_cluster("e2e-1", config)

        body = ocm.create_cluster.call_args[0][0]
        assert body["expiration_timestamp"] == "2024-01-01T01:30:00Z"
        assert body["version"] == {"id": "openshift-v4.14.1"}
        assert body["addons"] == {"items": [{"addon": {"id": "dvo"}}]}
        assert body["nodes"] == {"compute_machine_type": {"id": "m5.xlarge"}}

    def test_invalid_name(self, provider, ocm):
        with pytest.raises(BuildError):
            provider.create_cluster("E2E_1", ClusterConfig(region="us-east-1", user_override="tester"))
        ocm.create_cluster.assert_not_called()

    def test_missing_id_in_response(self, provider, ocm):
        ocm.create_cluster.return_value = _ok({})

        with pytest.raises(VerificationError):
            provider.create_cluster("e2e-1", ClusterConfig(region="us-east-1", user_override="tester"))

    def test_create_retries_provider_errors(self, provider, ocm):
        ocm.create_cluster.side_effect = [_err(503), _ok({"id": "abc"})]

        result = provider.create_cluster("e2e-1", ClusterConfig(region="us-east-1", user_override="tester"))

        assert result.cluster_id == "abc"
        assert ocm.create_cluster.call_count == 2


@pytest.mark.unit
class TestGenerateProperties:
    def test_ci_owner_wins(self, provider):
        props = provider.generate_properties(ClusterConfig(job_id=1234, user_override="tester"))
        assert props["OwnedBy"] == "prow"

    def test_user_override(self, provider):
        props = provider.generate_properties(ClusterConfig(user_override="tester"))
        assert props["OwnedBy"] == "tester"

    @patch("modules.provider.getpass.getuser", return_value="localuser")
    def test_current_user(self, mock_getuser, provider):
        props = provider.generate_properties(ClusterConfig())
        assert props["OwnedBy"] == "localuser"

    @patch("modules.provider.getpass.getuser", side_effect=OSError("no user"))
    def test_current_user_unavailable(self, mock_getuser, provider):
        with pytest.raises(BuildError, match="Unable to get current user"):
            provider.generate_properties(ClusterConfig())


@pytest.mark.unit
class TestScaleCluster:
    def test_no_op_when_already_at_size(self, provider, ocm):
        ocm.get_cluster.return_value = _ok(_cluster(compute=6))

        cluster = provider.scale_cluster("abc", 6)

        assert cluster.compute_nodes == 6
        ocm.update_cluster.assert_not_called()

    def test_scale_and_confirm(self, provider, ocm):
        ocm.get_cluster.side_effect = [_ok(_cluster(compute=3)), _ok(_cluster(compute=6))]
        ocm.update_cluster.return_value = _ok({})

        cluster = provider.scale_cluster("abc", 6)

        assert cluster.compute_nodes == 6
        ocm.update_cluster.assert_called_once_with("abc", {"nodes": {"compute": 6}})

    def test_mismatch_after_update(self, provider, ocm):
        ocm.get_cluster.side_effect = [_ok(_cluster(compute=3)), _ok(_cluster(compute=3))]
        ocm.update_cluster.return_value = _ok({})

        with pytest.raises(VerificationError, match="compute nodes"):
            provider.scale_cluster("abc", 6)

        assert ocm.update_cluster.call_count == 1

    def test_negative_count(self, provider, ocm):
        with pytest.raises(BuildError):
            provider.scale_cluster("abc", -1)
        ocm.get_cluster.assert_not_called()


@pytest.mark.unit
class TestExtendExpiry:
    def test_extend_by_two_and_a_half_hours(self, provider, ocm):
        ocm.get_cluster.side_effect = [
            _ok(_cluster(expiration="2024-01-01T00:00:00Z")),
            _ok(_cluster(expiration="2024-01-01T02:30:00Z")),
        ]
        ocm.update_cluster.return_value = _ok({})

        cluster = provider.extend_expiry("abc", hours=2, minutes=30)

        ocm.update_cluster.assert_called_once_with("abc", {"expiration_timestamp": "2024-01-01T02:30:00Z"})
        assert cluster.expiration_timestamp == datetime(2024, 1, 1, 2, 30, tzinfo=timezone.utc)

    def test_one_second_mismatch(self, provider, ocm):
        ocm.get_cluster.side_effect = [
            _ok(_cluster(expiration="2024-01-01T00:00:00Z")),
            _ok(_cluster(expiration="2024-01-01T02:30:01Z")),
        ]
        ocm.update_cluster.return_value = _ok({})

        with pytest.raises(VerificationError, match="2024-01-01T02:30:00Z"):
            provider.extend_expiry("abc", hours=2, minutes=30)

    def test_verification_read_failure(self, provider, ocm):
        ocm.get_cluster.side_effect = [_ok(_cluster()), _err(500), _err(500), _err(500)]
        ocm.update_cluster.return_value = _ok({})

        with pytest.raises(VerificationError, match="Couldn't verify"):
            provider.extend_expiry("abc", minutes=10)

    def test_negative_offset(self, provider, ocm):
        with pytest.raises(BuildError):
            provider.extend_expiry("abc", hours=-1)
        ocm.update_cluster.assert_not_called()

    def test_cluster_without_expiry(self, provider, ocm):
        ocm.get_cluster.return_value = _ok(_cluster(expiration=None))

        with pytest.raises(BuildError):
            provider.extend_expiry("abc", hours=1)


@pytest.mark.unit
class TestDeleteAndReads:
    def test_delete_retries_provider_error(self, provider, ocm):
        ocm.delete_cluster.side_effect = [_err(500), _ok(status=204)]

        provider.delete_cluster("abc")

        assert ocm.delete_cluster.call_count == 2

    def test_delete_exhausts_attempts(self, provider, ocm):
        ocm.delete_cluster.return_value = _err(500)

        with pytest.raises(RetryExhaustedError):
            provider.delete_cluster("abc")

        assert ocm.delete_cluster.call_count == 3

    def test_get_cluster_includes_addons(self, provider, ocm):
        ocm.get_cluster.return_value = _ok(_cluster())
        ocm.list_cluster_addons.return_value = _ok({"items": [{"id": "dvo"}, {"addon": {"id": "rhoam"}}]})

        cluster = provider.get_cluster("abc")

        assert cluster.addons == frozenset({"dvo", "rhoam"})

    def test_get_cluster_with_short_fraction(self, provider, ocm):
        ocm.get_cluster.return_value = _ok(_cluster(expiration="2024-01-01T00:00:00.12345Z"))

        cluster = provider.get_cluster("abc")

        assert cluster.expiration_timestamp == datetime(2024, 1, 1, 0, 0, 0, 123450, tzinfo=timezone.utc)

    def test_get_cluster_with_malformed_timestamp(self, provider, ocm):
        ocm.get_cluster.return_value = _ok(_cluster(expiration="not-a-time"))

        with pytest.raises(MalformedResponseError):
            provider.get_cluster("abc")

    def test_extend_expiry_drops_fraction(self, provider, ocm):
        ocm.get_cluster.side_effect = [
            _ok(_cluster(expiration="2024-01-01T00:00:00.12345Z")),
            _ok(_cluster(expiration="2024-01-01T01:00:00Z")),
        ]
        ocm.update_cluster.return_value = _ok({})

        provider.extend_expiry("abc", hours=1)

        ocm.update_cluster.assert_called_once_with("abc", {"expiration_timestamp": "2024-01-01T01:00:00Z"})

    def test_list_clusters(self, provider, ocm):
        ocm.list_clusters.return_value = _ok({"items": [_cluster("a1"), _cluster("b2")]})

        clusters = provider.list_clusters("name like 'e2e-%'")

        assert [c.id for c in clusters] == ["a1", "b2"]
        ocm.list_clusters.assert_called_once_with("name like 'e2e-%'")

    def test_kubeconfig(self, provider, ocm):
        ocm.get_credentials.return_value = _ok({"kubeconfig": "apiVersion: v1\n"})

        assert provider.cluster_kubeconfig("abc") == b"apiVersion: v1\n"

    def test_metrics(self, provider, ocm):
        ocm.get_cluster.return_value = _ok(_cluster(metrics={"nodes": {"compute": 3}}))

        assert provider.get_metrics("abc") == {"nodes": {"compute": 3}}

    def test_metrics_not_retried(self, provider, ocm):
        ocm.get_cluster.return_value = _err(500)

        with pytest.raises(ProviderError):
            provider.get_metrics("abc")

        assert ocm.get_cluster.call_count == 1
