"""
Convergence checks for an operator installed on a cluster.

The ``poll_*`` helpers wait for one resource to show up and raise on
failure. ``OperatorVerifier`` runs them for a whole operator and records a
pass/fail result per check.
"""

import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from lib.constants import DEFAULT_POLLING_TIMEOUT_MINUTES, LOCKFILE_POLL_INTERVAL, RESOURCE_POLL_INTERVAL
from lib.exceptions import ConfigurationError, LifecycleError, NotReadyError
from lib.kube_client import KubeClient
from lib.utils import CancellationToken
from lib.waiter import PollSpec, poll_until

from .operator_upgrade import OperatorUpgradeProtocol
from .reporter import CheckReporter

logger = logging.getLogger("osd_lifecycle")


class CsvMatchMode(Enum):
    """How a CSV listing is matched against the expected display name."""

    # Only the last listed CSV is compared
    LAST_ITEM = "last"
    ANY_ITEM = "any"


def csv_list_matches(csvs: List[Dict[str, Any]], display_name: str, mode: CsvMatchMode) -> bool:
    if not csvs:
        return False
    names = [(csv.get("spec") or {}).get("displayName") for csv in csvs]
    if mode is CsvMatchMode.LAST_ITEM:
        return names[-1] == display_name
    return display_name in names


def _require(resource: Optional[Dict[str, Any]], description: str) -> Dict[str, Any]:
    if resource is None:
        raise NotReadyError(f"{description} does not exist yet")
    return resource


def poll_csv_list(
    client: KubeClient,
    namespace: str,
    display_name: str,
    spec: PollSpec,
    match_mode: CsvMatchMode = CsvMatchMode.LAST_ITEM,
    cancel_token: Optional[CancellationToken] = None,
) -> List[Dict[str, Any]]:
    """Wait until the namespace lists a CSV with the given display name."""

    def check() -> List[Dict[str, Any]]:
        csvs = client.list_csvs(namespace)
        if not csv_list_matches(csvs, display_name, match_mode):
            raise NotReadyError("No matching clusterServiceVersion in CSV List")
        return csvs

    return poll_until(f"{display_name} clusterServiceVersion", check, spec, cancel_token)


def poll_lock_file(
    client: KubeClient,
    namespace: str,
    name: str,
    spec: PollSpec,
    cancel_token: Optional[CancellationToken] = None,
) -> Dict[str, Any]:
    """Wait for the ConfigMap an operator creates once it holds its leader lock."""
    return poll_until(
        f"{name} configMap",
        lambda: _require(client.get_configmap(namespace, name), f"configMap {name}"),
        spec,
        cancel_token,
    )


def poll_deployment(
    client: KubeClient,
    namespace: str,
    name: str,
    spec: PollSpec,
    cancel_token: Optional[CancellationToken] = None,
) -> Dict[str, Any]:
    return poll_until(
        f"{name} deployment",
        lambda: _require(client.get_deployment(namespace, name), f"deployment {name}"),
        spec,
        cancel_token,
    )


def poll_role_binding(
    client: KubeClient,
    namespace: str,
    name: str,
    spec: PollSpec,
    cancel_token: Optional[CancellationToken] = None,
) -> Dict[str, Any]:
    return poll_until(
        f"{name} roleBinding",
        lambda: _require(client.get_role_binding(namespace, name), f"roleBinding {name}"),
        spec,
        cancel_token,
    )


def poll_cluster_role_binding(
    client: KubeClient,
    name: str,
    spec: PollSpec,
    cancel_token: Optional[CancellationToken] = None,
) -> Dict[str, Any]:
    return poll_until(
        f"{name} clusterRoleBinding",
        lambda: _require(client.get_cluster_role_binding(name), f"clusterRoleBinding {name}"),
        spec,
        cancel_token,
    )


@dataclass(frozen=True)
class OperatorSpec:
    """What an installed operator is expected to have deployed."""

    namespace: str
    csv_display_name: str = ""
    lock_file: str = ""
    deployment: str = ""
    default_replicas: int = 1
    cluster_roles: Tuple[str, ...] = ()
    cluster_role_bindings: Tuple[str, ...] = ()
    roles: Tuple[str, ...] = ()
    role_bindings: Tuple[str, ...] = ()
    secrets: Tuple[str, ...] = ()
    subscription: str = ""
    previous_csv: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "OperatorSpec":
        if not data.get("namespace"):
            raise ConfigurationError("Operator definition requires a namespace")
        unknown = sorted(set(data) - {f.name for f in fields(cls)})
        if unknown:
            raise ConfigurationError(f"Unknown operator definition keys: {', '.join(unknown)}")

        values = dict(data)
        for key in ("cluster_roles", "cluster_role_bindings", "roles", "role_bindings", "secrets"):
            values[key] = tuple(values.get(key) or ())
        return cls(**values)


class OperatorVerifier:
    """Runs convergence checks for an operator and reports each outcome."""

    def __init__(
        self,
        kube_client: KubeClient,
        reporter: Optional[CheckReporter] = None,
        polling_timeout: float = DEFAULT_POLLING_TIMEOUT_MINUTES,
        csv_match_mode: CsvMatchMode = CsvMatchMode.LAST_ITEM,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        self.client = kube_client
        self.reporter = reporter or CheckReporter()
        self.polling_timeout = polling_timeout
        self.csv_match_mode = csv_match_mode
        self.cancel_token = cancel_token

    def _spec(self, interval: float) -> PollSpec:
        return PollSpec.from_minutes(self.polling_timeout, interval)

    def _record(self, check: str, action: Callable[[], str]) -> bool:
        try:
            message = action()
        except LifecycleError as e:
            self.reporter.add_result(check, False, str(e))
            return False
        self.reporter.add_result(check, True, message)
        return True

    def check_cluster_service_version(self, namespace: str, display_name: str) -> bool:
        def action() -> str:
            poll_csv_list(
                self.client,
                namespace,
                display_name,
                self._spec(RESOURCE_POLL_INTERVAL),
                self.csv_match_mode,
                self.cancel_token,
            )
            return f"{display_name} found in {namespace}"

        return self._record("clusterServiceVersion should exist", action)

    def check_configmap_lockfile(self, namespace: str, lock_file: str) -> bool:
        def action() -> str:
            poll_lock_file(self.client, namespace, lock_file, self._spec(LOCKFILE_POLL_INTERVAL), self.cancel_token)
            return f"lock file {lock_file} present"

        return self._record("configmaps should exist", action)

    def check_deployment(self, namespace: str, name: str, default_replicas: int = 1) -> bool:
        spec = self._spec(RESOURCE_POLL_INTERVAL)

        def exists() -> str:
            poll_deployment(self.client, namespace, name, spec, self.cancel_token)
            return f"deployment {name} found"

        def replicas_ready() -> str:
            deployment = poll_deployment(self.client, namespace, name, spec, self.cancel_token)
            status = deployment.get("status") or {}
            desired = status.get("replicas") or 0
            ready = status.get("ready_replicas") or 0
            if desired != default_replicas:
                raise NotReadyError(
                    f"The deployment desired replicas ({desired}) should not drift from the default {default_replicas}"
                )
            if ready != desired:
                raise NotReadyError(f"All desired replicas should be ready ({ready}/{desired})")
            return f"{ready}/{desired} replicas ready"

        found = self._record("deployment should exist", exists)
        ready = self._record("deployment should have all desired replicas ready", replicas_ready)
        return found and ready

    def _check_each(self, check: str, kind: str, names: Tuple[str, ...], fetch: Callable[[str], Any]) -> bool:
        def action() -> str:
            for name in names:
                try:
                    resource = fetch(name)
                except LifecycleError as e:
                    raise LifecycleError(f"failed to get {kind} {name}: {e}") from e
                if resource is None:
                    raise NotReadyError(f"failed to get {kind} {name}")
            return f"{len(names)} {kind}(s) found"

        return self._record(check, action)

    def check_cluster_roles(self, names: Tuple[str, ...]) -> bool:
        return self._check_each("clusterRoles should exist", "clusterRole", names, self.client.get_cluster_role)

    def check_cluster_role_bindings(self, names: Tuple[str, ...]) -> bool:
        spec = self._spec(RESOURCE_POLL_INTERVAL)
        return self._check_each(
            "clusterRoleBindings should exist",
            "clusterRoleBinding",
            names,
            lambda name: poll_cluster_role_binding(self.client, name, spec, self.cancel_token),
        )

    def check_roles(self, namespace: str, names: Tuple[str, ...]) -> bool:
        return self._check_each(
            "roles should exist", "role", names, lambda name: self.client.get_role(namespace, name)
        )

    def check_role_bindings(self, namespace: str, names: Tuple[str, ...]) -> bool:
        spec = self._spec(RESOURCE_POLL_INTERVAL)
        return self._check_each(
            "roleBindings should exist",
            "roleBinding",
            names,
            lambda name: poll_role_binding(self.client, namespace, name, spec, self.cancel_token),
        )

    def check_secrets(self, namespace: str, names: Tuple[str, ...]) -> bool:
        return self._check_each(
            "secrets should exist", "secret", names, lambda name: self.client.get_secret(namespace, name)
        )

    def check_upgrade(self, namespace: str, subscription: str, previous_csv: str) -> bool:
        def action() -> str:
            protocol = OperatorUpgradeProtocol(
                self.client, namespace, subscription, previous_csv, cancel_token=self.cancel_token
            )
            upgraded_to = protocol.run()
            return f"upgraded from {previous_csv} to {upgraded_to}"

        return self._record("should upgrade from the replaced version", action)

    def verify(self, operator: OperatorSpec, include_upgrade: bool = False) -> bool:
        """Run every check the operator definition asks for."""
        results = []
        ns = operator.namespace
        if operator.csv_display_name:
            results.append(self.check_cluster_service_version(ns, operator.csv_display_name))
        if operator.lock_file:
            results.append(self.check_configmap_lockfile(ns, operator.lock_file))
        if operator.deployment:
            results.append(self.check_deployment(ns, operator.deployment, operator.default_replicas))
        if operator.cluster_roles:
            results.append(self.check_cluster_roles(operator.cluster_roles))
        if operator.cluster_role_bindings:
            results.append(self.check_cluster_role_bindings(operator.cluster_role_bindings))
        if operator.roles:
            results.append(self.check_roles(ns, operator.roles))
        if operator.role_bindings:
            results.append(self.check_role_bindings(ns, operator.role_bindings))
        if operator.secrets:
            results.append(self.check_secrets(ns, operator.secrets))
        if include_upgrade:
            if not (operator.subscription and operator.previous_csv):
                raise ConfigurationError("Upgrade check requires 'subscription' and 'previous_csv'")
            results.append(self.check_upgrade(ns, operator.subscription, operator.previous_csv))

        return all(results)
