"""Unit tests for modules/operator_checks.py.

The kube client is a Mock and ``lib.waiter.time`` is patched so polls never sleep.
"""

from unittest.mock import Mock, patch

import pytest

from lib.exceptions import APIError, ConfigurationError, ErrorKind, PollTimeoutError
from lib.waiter import PollSpec
from modules.operator_checks import (
    CsvMatchMode,
    OperatorSpec,
    OperatorVerifier,
    csv_list_matches,
    poll_csv_list,
)
from modules.reporter import CheckReporter

NAMESPACE = "openshift-deployment-validation-operator"


def _csv(display_name):
    return {"spec": {"displayName": display_name}}


@pytest.fixture
def mock_client():
    client = Mock()
    client.list_csvs.return_value = [_csv("Deployment Validation Operator")]
    client.get_configmap.return_value = {"metadata": {"name": "dvo-lock"}}
    client.get_deployment.return_value = {"status": {"replicas": 1, "ready_replicas": 1}}
    client.get_cluster_role.return_value = {"metadata": {}}
    client.get_cluster_role_binding.return_value = {"metadata": {}}
    client.get_role.return_value = {"metadata": {}}
    client.get_role_binding.return_value = {"metadata": {}}
    client.get_secret.return_value = {"metadata": {}}
    return client


@pytest.fixture
def reporter():
    return CheckReporter()


@pytest.fixture
def verifier(mock_client, reporter):
    return OperatorVerifier(mock_client, reporter, polling_timeout=1)


@pytest.fixture
def mock_time():
    with patch("lib.waiter.time") as mocked:
        mocked.time.return_value = 0
        yield mocked


@pytest.mark.unit
class TestCsvListMatches:
    def test_empty_list_never_matches(self):
        assert csv_list_matches([], "X", CsvMatchMode.LAST_ITEM) is False
        assert csv_list_matches([], "X", CsvMatchMode.ANY_ITEM) is False

    def test_last_item(self):
        csvs = [_csv("Other"), _csv("X")]
        assert csv_list_matches(csvs, "X", CsvMatchMode.LAST_ITEM)

    def test_last_item_ignores_earlier_entries(self):
        csvs = [_csv("X"), _csv("Other")]
        assert not csv_list_matches(csvs, "X", CsvMatchMode.LAST_ITEM)
        assert csv_list_matches(csvs, "X", CsvMatchMode.ANY_ITEM)


@pytest.mark.unit
class TestPollCsvList:
    def test_waits_until_listed(self, mock_client, mock_time):
        mock_client.list_csvs.side_effect = [[], [_csv("X")]]

        csvs = poll_csv_list(mock_client, NAMESPACE, "X", PollSpec(60, 5))

        assert csvs == [_csv("X")]
        assert mock_client.list_csvs.call_count == 2
        mock_time.sleep.assert_called_once_with(5)

    def test_times_out(self, mock_client):
        mock_client.list_csvs.return_value = []
        with patch("lib.waiter.time") as mocked:
            mocked.time.side_effect = [0, 61]

            with pytest.raises(PollTimeoutError, match="No matching clusterServiceVersion"):
                poll_csv_list(mock_client, NAMESPACE, "X", PollSpec(60, 5))


@pytest.mark.unit
class TestOperatorSpec:
    def test_from_mapping(self):
        spec = OperatorSpec.from_mapping(
            {
                "namespace": NAMESPACE,
                "deployment": "deployment-validation-operator",
                "cluster_roles": ["dvo-role"],
            }
        )

        assert spec.namespace == NAMESPACE
        assert spec.cluster_roles == ("dvo-role",)
        assert spec.secrets == ()

    def test_namespace_required(self):
        with pytest.raises(ConfigurationError, match="namespace"):
            OperatorSpec.from_mapping({"deployment": "x"})

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigurationError, match="deploymnet"):
            OperatorSpec.from_mapping({"namespace": NAMESPACE, "deploymnet": "x"})


@pytest.mark.unit
class TestOperatorVerifier:
    def test_deployment_ready(self, verifier, reporter, mock_time):
        assert verifier.check_deployment(NAMESPACE, "dvo") is True
        assert [r["check"] for r in reporter.results] == [
            "deployment should exist",
            "deployment should have all desired replicas ready",
        ]
        assert reporter.all_passed

    def test_deployment_replica_drift(self, verifier, reporter, mock_client, mock_time):
        mock_client.get_deployment.return_value = {"status": {"replicas": 3, "ready_replicas": 3}}

        assert verifier.check_deployment(NAMESPACE, "dvo", default_replicas=1) is False
        failure = reporter.failures()[0]
        assert "should not drift" in failure["message"]

    def test_deployment_not_all_ready(self, verifier, reporter, mock_client, mock_time):
        mock_client.get_deployment.return_value = {"status": {"replicas": 1, "ready_replicas": 0}}

        assert verifier.check_deployment(NAMESPACE, "dvo") is False
        assert "(0/1)" in reporter.failures()[0]["message"]

    def test_missing_cluster_role(self, verifier, reporter, mock_client):
        mock_client.get_cluster_role.side_effect = [{"metadata": {}}, None]

        assert verifier.check_cluster_roles(("a", "b")) is False
        assert "failed to get clusterRole b" in reporter.failures()[0]["message"]

    def test_forbidden_role_binding_fails_fast(self, verifier, reporter, mock_client, mock_time):
        mock_client.get_role_binding.side_effect = APIError("denied", kind=ErrorKind.FORBIDDEN, status=403)

        assert verifier.check_role_bindings(NAMESPACE, ("dvo-rb",)) is False
        assert mock_client.get_role_binding.call_count == 1
        mock_time.sleep.assert_not_called()
        assert "failed to get roleBinding dvo-rb" in reporter.failures()[0]["message"]

    def test_cluster_role_binding_timeout(self, verifier, reporter, mock_client):
        mock_client.get_cluster_role_binding.return_value = None
        with patch("lib.waiter.time") as mocked:
            mocked.time.side_effect = [0, 61]

            assert verifier.check_cluster_role_bindings(("dvo-crb",)) is False

        assert "before timeout" in reporter.failures()[0]["message"]

    def test_csv_any_item_mode(self, mock_client, reporter, mock_time):
        mock_client.list_csvs.return_value = [_csv("Deployment Validation Operator"), _csv("Other")]
        verifier = OperatorVerifier(
            mock_client, reporter, polling_timeout=1, csv_match_mode=CsvMatchMode.ANY_ITEM
        )

        assert verifier.check_cluster_service_version(NAMESPACE, "Deployment Validation Operator")

    def test_verify_runs_requested_checks(self, verifier, reporter, mock_client, mock_time):
        operator = OperatorSpec(
            namespace=NAMESPACE,
            csv_display_name="Deployment Validation Operator",
            lock_file="dvo-lock",
            deployment="deployment-validation-operator",
            cluster_roles=("dvo-cr",),
            cluster_role_bindings=("dvo-crb",),
            roles=("dvo-role",),
            role_bindings=("dvo-rb",),
            secrets=("dvo-secret",),
        )

        assert verifier.verify(operator) is True
        assert len(reporter.results) == 9
        mock_client.get_secret.assert_called_once_with(NAMESPACE, "dvo-secret")

    def test_verify_skips_unset_checks(self, verifier, reporter, mock_client):
        assert verifier.verify(OperatorSpec(namespace=NAMESPACE)) is True
        assert reporter.results == []
        mock_client.list_csvs.assert_not_called()

    def test_upgrade_requires_subscription(self, verifier):
        with pytest.raises(ConfigurationError):
            verifier.verify(OperatorSpec(namespace=NAMESPACE), include_upgrade=True)

    @patch("modules.operator_checks.OperatorUpgradeProtocol")
    def test_check_upgrade(self, mock_protocol_cls, verifier, reporter, mock_client):
        mock_protocol_cls.return_value.run.return_value = "dvo.v0.2.0"

        assert verifier.check_upgrade(NAMESPACE, "dvo", "dvo.v0.1.0") is True
        assert reporter.results[0]["message"] == "upgraded from dvo.v0.1.0 to dvo.v0.2.0"
        mock_protocol_cls.assert_called_once_with(mock_client, NAMESPACE, "dvo", "dvo.v0.1.0", cancel_token=None)
