"""
Operator upgrade verification through manual InstallPlan approval.

The installed operator is removed and reinstalled at the version it replaces,
then upgraded back to the version that was running. Both installs go through
an InstallPlan that this module approves itself, so the test observes every
stage of the OLM workflow. The cluster is expected to be disposable: a failed
step is reported, nothing is rolled back.
"""

import contextlib
import copy
import logging
from typing import Any, Dict, Iterator, Optional

from lib.constants import (
    APPROVAL_AUTOMATIC,
    APPROVAL_MANUAL,
    CSV_INSTALL_INTERVAL,
    CSV_INSTALL_TIMEOUT,
    CSV_PHASE_SUCCEEDED,
    INSTALLPLAN_GC_INTERVAL,
    INSTALLPLAN_GC_TIMEOUT,
    INSTALLPLAN_REF_INTERVAL,
    INSTALLPLAN_REF_TIMEOUT,
    OLM_GROUP,
    OLM_VERSION,
)
from lib.exceptions import APIError, ErrorKind, LifecycleError, NotReadyError, UpgradeStepError
from lib.kube_client import KubeClient
from lib.utils import CancellationToken
from lib.waiter import ConvergencePoller, PollSpec

logger = logging.getLogger("osd_lifecycle")


def _not_found(kind: str, name: str) -> APIError:
    return APIError(f"{kind} {name} not found", kind=ErrorKind.NOT_FOUND, status=404)


class OperatorUpgradeProtocol:
    """Upgrades an operator from ``previous_csv`` to its currently installed CSV."""

    def __init__(
        self,
        kube_client: KubeClient,
        namespace: str,
        subscription_name: str,
        previous_csv: str,
        cancel_token: Optional[CancellationToken] = None,
        gc_spec: Optional[PollSpec] = None,
        install_plan_spec: Optional[PollSpec] = None,
        csv_spec: Optional[PollSpec] = None,
    ) -> None:
        self.client = kube_client
        self.namespace = namespace
        self.subscription_name = subscription_name
        self.previous_csv = previous_csv
        self.gc_poller = ConvergencePoller(
            gc_spec or PollSpec(INSTALLPLAN_GC_TIMEOUT, INSTALLPLAN_GC_INTERVAL), cancel_token
        )
        self.install_plan_poller = ConvergencePoller(
            install_plan_spec or PollSpec(INSTALLPLAN_REF_TIMEOUT, INSTALLPLAN_REF_INTERVAL), cancel_token
        )
        self.csv_poller = ConvergencePoller(csv_spec or PollSpec(CSV_INSTALL_TIMEOUT, CSV_INSTALL_INTERVAL), cancel_token)

    @contextlib.contextmanager
    def _step(self, step: str, version: str) -> Iterator[None]:
        logger.info("Operator upgrade: %s (%s)", step, version)
        try:
            yield
        except LifecycleError as e:
            logger.error("Operator upgrade step '%s' failed for %s: %s", step, version, e)
            raise UpgradeStepError(step, version, e) from e

    def run(self) -> str:
        """Execute the full upgrade sequence and return the CSV it upgraded to.

        Raises:
            UpgradeStepError: Naming the step and version that failed
        """
        with self._step("read subscription", self.subscription_name):
            subscription = self._get_subscription()
            status = subscription.get("status") or {}
            starting_csv = status.get("currentCSV")
            if not starting_csv:
                raise NotReadyError(f"Subscription {self.subscription_name} has no current CSV")
            install_plan_name = (status.get("installplan") or status.get("installPlanRef") or {}).get("name")

        with self._step("delete subscription", self.subscription_name):
            if not self.client.delete_subscription(self.namespace, self.subscription_name):
                raise _not_found("Subscription", self.subscription_name)

        with self._step("delete clusterServiceVersion", starting_csv):
            if not self.client.delete_csv(self.namespace, starting_csv):
                raise _not_found("ClusterServiceVersion", starting_csv)

        if install_plan_name:
            with self._step("wait for installplan garbage collection", install_plan_name):
                self._wait_install_plan_deleted(install_plan_name)

        with self._step("create subscription", self.previous_csv):
            self.client.create_subscription(self.namespace, self._previous_version_subscription(subscription))

        first_plan = self._install_version(self.previous_csv)

        with self._step("switch subscription to automatic approval", self.previous_csv):
            subscription = self._get_subscription()
            subscription.setdefault("spec", {})["installPlanApproval"] = APPROVAL_AUTOMATIC
            self.client.update_subscription(self.namespace, subscription)

        self._install_version(starting_csv, previous_plan=first_plan)

        logger.info("Operator upgraded from %s to %s", self.previous_csv, starting_csv)
        return starting_csv

    def _get_subscription(self) -> Dict[str, Any]:
        subscription = self.client.get_subscription(self.namespace, self.subscription_name)
        if subscription is None:
            raise _not_found("Subscription", self.subscription_name)
        return subscription

    def _previous_version_subscription(self, current: Dict[str, Any]) -> Dict[str, Any]:
        spec = current.get("spec") or {}
        return {
            "apiVersion": f"{OLM_GROUP}/{OLM_VERSION}",
            "kind": "Subscription",
            "metadata": {"name": self.subscription_name, "namespace": self.namespace},
            "spec": {
                "name": spec.get("name"),
                "channel": spec.get("channel"),
                "source": spec.get("source"),
                "sourceNamespace": spec.get("sourceNamespace"),
                "installPlanApproval": APPROVAL_MANUAL,
                "startingCSV": self.previous_csv,
            },
        }

    def _install_version(self, csv_name: str, previous_plan: Optional[str] = None) -> str:
        """Approve the InstallPlan for ``csv_name`` and wait until the CSV succeeds."""
        with self._step("get installplan", csv_name):
            install_plan = self._wait_install_plan(exclude=previous_plan)

        plan_name = install_plan["metadata"]["name"]
        with self._step("approve installplan", csv_name):
            approved = copy.deepcopy(install_plan)
            approved.setdefault("spec", {})["approved"] = True
            self.client.update_install_plan(self.namespace, approved)

        with self._step("wait for clusterServiceVersion to succeed", csv_name):
            self._wait_csv_succeeded(csv_name)

        return plan_name

    def _wait_install_plan_deleted(self, name: str) -> None:
        def check() -> bool:
            if self.client.get_install_plan(self.namespace, name) is not None:
                raise NotReadyError(f"installplan {name} not garbage collected yet")
            return True

        self.gc_poller.poll(f"installplan {name} garbage collection", check)

    def _wait_install_plan(self, exclude: Optional[str] = None) -> Dict[str, Any]:
        def check() -> str:
            subscription = self.client.get_subscription(self.namespace, self.subscription_name) or {}
            ref = (subscription.get("status") or {}).get("installPlanRef") or {}
            name = ref.get("name")
            if not name or name == exclude:
                raise NotReadyError(f"subscription {self.subscription_name} has no new installplan reference")
            return name

        plan_name = self.install_plan_poller.poll(f"installplan for subscription {self.subscription_name}", check)
        install_plan = self.client.get_install_plan(self.namespace, plan_name)
        if install_plan is None:
            raise _not_found("InstallPlan", plan_name)
        return install_plan

    def _wait_csv_succeeded(self, csv_name: str) -> Dict[str, Any]:
        def check() -> Dict[str, Any]:
            csv = self.client.get_csv(self.namespace, csv_name)
            phase = ((csv or {}).get("status") or {}).get("phase")
            if phase != CSV_PHASE_SUCCEEDED:
                raise NotReadyError(f"clusterServiceVersion {csv_name} phase is {phase or 'not available'}")
            return csv

        return self.csv_poller.poll(f"clusterServiceVersion {csv_name} to succeed", check)
