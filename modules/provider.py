"""
Cluster lifecycle operations against the OpenShift Cluster Manager.

Every mutation follows the same two phases: the request is submitted through
the retry executor, then the cluster is read back once and compared with
what was asked for. A mismatch at that point is reported, not polled away.
"""

import functools
import getpass
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from lib.config import ClusterConfig
from lib.constants import (
    CI_OWNER,
    MULTI_AZ_COMPUTE_NODES,
    PROPERTY_MADE_BY,
    PROPERTY_OWNED_BY,
)
from lib.exceptions import BuildError, LifecycleError, VerificationError
from lib.models import Cluster, format_timestamp
from lib.ocm_client import OCMClient, OCMResponse
from lib.retry import RetryExecutor, RetryPolicy
from lib.utils import CancellationToken
from lib.validation import InputValidator

logger = logging.getLogger("osd_lifecycle")


@dataclass(frozen=True)
class CreateResult:
    """Outcome of a cluster creation request."""

    cluster_id: str
    region: str
    config: ClusterConfig


class OCMProvider:
    """Creates, mutates and reads clusters through the provider API."""

    def __init__(
        self,
        ocm_client: OCMClient,
        retry_policy: Optional[RetryPolicy] = None,
        cancel_token: Optional[CancellationToken] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.ocm = ocm_client
        self.retryer = RetryExecutor(retry_policy, cancel_token)
        self._rng = rng or random.Random()
        self._now = clock or (lambda: datetime.now(timezone.utc))

    def call(self, description: str, request: Callable[[], OCMResponse]) -> Dict[str, Any]:
        """Send a request under the retry policy and return the response body.

        A structured provider error in the response is raised as
        ``ProviderError`` and retried exactly like a transport failure.
        """

        def attempt() -> Dict[str, Any]:
            return request().raise_for_error(description)

        return self.retryer.run(attempt, description)

    # =============================
    # Create
    # =============================
    def create_cluster(self, name: str, config: ClusterConfig) -> CreateResult:
        """Request a new cluster and return its provider-assigned id.

        When ``config.region`` is ``"random"`` an enabled region is picked
        first; the resolved region and config come back in the result rather
        than being stored anywhere shared.

        Raises:
            BuildError: The request could not be assembled
            RetryExhaustedError: The provider kept rejecting the request
        """
        config = self.resolve_region(config)
        properties = self.generate_properties(config)
        body = self.build_cluster_request(name, config, properties)

        logger.info(
            "Creating cluster %s (region: %s, provider: %s, multi-AZ: %s)",
            name,
            config.region,
            config.cloud_provider,
            config.multi_az,
        )
        created = self.call(
            f"create cluster '{name}'",
            functools.partial(self.ocm.create_cluster, body),
        )

        cluster_id = created.get("id")
        if not cluster_id:
            raise VerificationError(f"Provider accepted cluster '{name}' but returned no id")

        logger.info("Cluster %s requested with id %s", name, cluster_id)
        return CreateResult(cluster_id=cluster_id, region=config.region, config=config)

    def resolve_region(self, config: ClusterConfig) -> ClusterConfig:
        """Replace the ``"random"`` region with a randomly chosen enabled one."""
        if not config.is_random_region:
            return config

        body = self.call(
            f"list regions for {config.cloud_provider}",
            functools.partial(self.ocm.list_regions, config.cloud_provider),
        )
        remaining: List[Dict[str, Any]] = list(body.get("items") or [])
        if not remaining:
            raise BuildError(f"No regions available for cloud provider '{config.cloud_provider}'")

        while remaining:
            candidate = remaining.pop(self._rng.randrange(len(remaining)))
            if candidate.get("enabled"):
                region_id = candidate.get("id", "")
                logger.info("Selected random region %s", region_id)
                return config.merged(region=region_id)
            logger.debug("Region %s is disabled, sampling again", candidate.get("id"))

        raise BuildError(f"No enabled region found for cloud provider '{config.cloud_provider}'")

    def generate_properties(self, config: ClusterConfig) -> Dict[str, str]:
        """Ownership properties attached to every cluster this tool creates."""
        if config.running_in_ci:
            username = CI_OWNER
        elif config.user_override:
            username = config.user_override
        else:
            try:
                username = getpass.getuser()
            except (OSError, KeyError, ImportError) as e:
                raise BuildError(f"Unable to get current user: {e}") from e

        return {
            PROPERTY_MADE_BY: "true",
            PROPERTY_OWNED_BY: username,
        }

    def build_cluster_request(self, name: str, config: ClusterConfig, properties: Dict[str, str]) -> Dict[str, Any]:
        """Assemble the cluster creation body."""
        try:
            InputValidator.validate_cluster_name(name)
        except LifecycleError as e:
            raise BuildError(f"Couldn't build cluster description: {e}") from e

        if not config.cloud_provider:
            raise BuildError("Couldn't build cluster description: cloud provider is required")
        if not config.region or config.is_random_region:
            raise BuildError("Couldn't build cluster description: region is not resolved")

        body: Dict[str, Any] = {
            "name": name,
            "flavour": {"id": config.flavour},
            "region": {"id": config.region},
            "cloud_provider": {"id": config.cloud_provider},
            "multi_az": config.multi_az,
            "properties": dict(properties),
        }
        if config.version:
            body["version"] = {"id": config.version}

        if config.expiry_minutes > 0:
            # Expiration makes the provider remove the cluster if nobody else does
            expiration = self._now() + timedelta(minutes=config.expiry_minutes)
            body["expiration_timestamp"] = format_timestamp(expiration)

        nodes: Dict[str, Any] = {}
        if config.multi_az:
            nodes["compute"] = MULTI_AZ_COMPUTE_NODES
        if config.compute_machine_type:
            nodes["compute_machine_type"] = {"id": config.compute_machine_type}
        if nodes:
            body["nodes"] = nodes

        if config.addon_ids_at_creation:
            body["addons"] = {"items": [{"addon": {"id": addon_id}} for addon_id in config.addon_ids_at_creation]}

        return body

    # =============================
    # Mutations
    # =============================
    def _mutate_then_confirm(
        self,
        description: str,
        cluster_id: str,
        submit: Callable[[], OCMResponse],
        confirmed: Callable[[Cluster], bool],
        mismatch: Callable[[Cluster], str],
    ) -> Cluster:
        """Submit a change (retried), then re-read the cluster once and check it."""
        self.call(description, submit)

        try:
            final = self.get_cluster(cluster_id)
        except LifecycleError as e:
            logger.error("Error attempting to retrieve cluster %s for verification: %s", cluster_id, e)
            raise VerificationError(f"Couldn't verify {description}: {e}") from e

        if not confirmed(final):
            raise VerificationError(mismatch(final))
        return final

    def scale_cluster(self, cluster_id: str, compute_nodes: int) -> Cluster:
        """Grow or shrink the cluster to the desired number of compute nodes."""
        InputValidator.validate_cluster_id(cluster_id)
        if compute_nodes < 0:
            raise BuildError(f"Error while building scaled cluster object: invalid node count {compute_nodes}")

        current = self._get_ocm_cluster(cluster_id)
        current_nodes = int((current.get("nodes") or {}).get("compute") or 0)
        if current_nodes == compute_nodes:
            logger.info("Cluster already at desired size (%d)", compute_nodes)
            return self._to_cluster(current)

        final = self._mutate_then_confirm(
            f"scale cluster '{cluster_id}' to {compute_nodes} compute nodes",
            cluster_id,
            functools.partial(self.ocm.update_cluster, cluster_id, {"nodes": {"compute": compute_nodes}}),
            lambda c: c.compute_nodes == compute_nodes,
            lambda c: (
                f"Expected number of compute nodes ({compute_nodes}) not reflected in OCM (found {c.compute_nodes})"
            ),
        )
        logger.info("Cluster successfully scaled to %d nodes", compute_nodes)
        return final

    def extend_expiry(self, cluster_id: str, hours: int = 0, minutes: int = 0, seconds: int = 0) -> Cluster:
        """Push the cluster's expiration timestamp further into the future."""
        InputValidator.validate_cluster_id(cluster_id)
        for label, value in (("hours", hours), ("minutes", minutes), ("seconds", seconds)):
            if value < 0:
                raise BuildError(f"Cannot extend expiry by negative {label} ({value})")

        cluster = self.get_cluster(cluster_id)
        if cluster.expiration_timestamp is None:
            raise BuildError(f"Cluster '{cluster_id}' has no expiration timestamp to extend")

        target = cluster.expiration_timestamp.replace(microsecond=0)
        if hours:
            target += timedelta(hours=hours)
        if minutes:
            target += timedelta(minutes=minutes)
        if seconds:
            target += timedelta(seconds=seconds)

        final = self._mutate_then_confirm(
            f"extend expiry of cluster '{cluster_id}'",
            cluster_id,
            functools.partial(
                self.ocm.update_cluster,
                cluster_id,
                {"expiration_timestamp": format_timestamp(target)},
            ),
            lambda c: c.expiration_timestamp == target,
            lambda c: (
                f"Expected expiration time {format_timestamp(target)} not reflected in OCM "
                f"(found {format_timestamp(c.expiration_timestamp) if c.expiration_timestamp else 'none'})"
            ),
        )
        logger.info("Successfully extended cluster expiry time to %s", format_timestamp(target))
        return final

    def delete_cluster(self, cluster_id: str) -> None:
        """Request deletion of the cluster."""
        InputValidator.validate_cluster_id(cluster_id)
        self.call(f"delete cluster '{cluster_id}'", functools.partial(self.ocm.delete_cluster, cluster_id))
        logger.info("Deletion of cluster %s requested", cluster_id)

    # =============================
    # Reads
    # =============================
    def _get_ocm_cluster(self, cluster_id: str) -> Dict[str, Any]:
        return self.call(f"retrieve cluster '{cluster_id}'", functools.partial(self.ocm.get_cluster, cluster_id))

    def _to_cluster(self, record: Dict[str, Any]) -> Cluster:
        cluster_id = record.get("id", "")
        addons = self.call(
            f"retrieve addons for cluster '{cluster_id}'",
            functools.partial(self.ocm.list_cluster_addons, cluster_id),
        )
        addon_ids = [item.get("id") or (item.get("addon") or {}).get("id") for item in addons.get("items") or []]
        return Cluster.from_ocm(record, [addon_id for addon_id in addon_ids if addon_id])

    def get_cluster(self, cluster_id: str) -> Cluster:
        InputValidator.validate_cluster_id(cluster_id)
        return self._to_cluster(self._get_ocm_cluster(cluster_id))

    def list_clusters(self, query: str = "") -> List[Cluster]:
        """List clusters matching a provider search expression."""
        body = self.call(
            f"list clusters matching '{query}'",
            functools.partial(self.ocm.list_clusters, query or None),
        )
        return [self._to_cluster(record) for record in body.get("items") or []]

    def cluster_kubeconfig(self, cluster_id: str) -> bytes:
        InputValidator.validate_cluster_id(cluster_id)
        body = self.call(
            f"retrieve credentials for cluster '{cluster_id}'",
            functools.partial(self.ocm.get_credentials, cluster_id),
        )
        return (body.get("kubeconfig") or "").encode("utf-8")

    def get_metrics(self, cluster_id: str) -> Dict[str, Any]:
        """Single best-effort read of the cluster metrics; not retried."""
        InputValidator.validate_cluster_id(cluster_id)
        resp = self.ocm.get_cluster(cluster_id)
        return resp.raise_for_error(f"retrieve metrics for cluster '{cluster_id}'").get("metrics") or {}
