"""
Kubernetes client wrapper for the provisioned cluster's control plane.

Reads return ``None`` for missing resources. Every other API failure leaves
this module as an ``APIError`` whose ``kind`` says what went wrong
(forbidden, not found, conflict, server, transport), so callers classify
errors without inspecting message text.
"""

import functools
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from urllib3.exceptions import HTTPError

from lib.constants import CSV_PLURAL, INSTALLPLAN_PLURAL, OLM_GROUP, OLM_VERSION, SUBSCRIPTION_PLURAL
from lib.exceptions import APIError, ErrorKind, TransportError
from lib.utils import CancellationToken
from lib.validation import InputValidator

logger = logging.getLogger("osd_lifecycle")

F = TypeVar("F", bound=Callable[..., Any])


def is_retryable_error(exception: BaseException) -> bool:
    """Check if exception is retryable."""
    if isinstance(exception, ApiException):
        # Retry on server errors (5xx) and too many requests (429)
        return 500 <= exception.status < 600 or exception.status == 429
    if isinstance(exception, HTTPError):
        return True
    return False


def _should_retry(exception: BaseException) -> bool:
    """Custom retry condition using is_retryable_error."""
    if not isinstance(exception, Exception):
        return False
    return is_retryable_error(exception)


# Standard retry decorator for API calls
_retry_api_call = retry(
    retry=retry_if_exception(_should_retry),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(5),
    before_sleep=before_sleep_log(logger, logging.DEBUG),
    reraise=True,
)


def retry_api_call(func: F) -> F:
    """Retry a KubeClient method, waiting on the client's cancel token when it has one."""
    retrying = _retry_api_call(func)

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        cancel_token = getattr(self, "cancel_token", None)
        if cancel_token is None:
            return retrying(self, *args, **kwargs)
        return retrying.retry_with(sleep=cancel_token.sleep)(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


def translate_api_errors(func: F) -> F:
    """Convert kubernetes/urllib3 exceptions into ``APIError``."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ApiException as e:
            raise APIError(
                f"{func.__name__} failed: status={e.status} reason={e.reason}",
                kind=ErrorKind.from_status(e.status),
                status=e.status,
                reason=e.reason,
            ) from e
        except HTTPError as e:
            raise TransportError(f"{func.__name__} failed: {e}") from e

    return wrapper  # type: ignore[return-value]


def _to_dict(obj: Any) -> Dict:
    return obj.to_dict() if hasattr(obj, "to_dict") else obj


class KubeClient:
    """Wrapper for Kubernetes API clients with OLM and RBAC helpers."""

    def __init__(
        self,
        context: Optional[str] = None,
        kubeconfig: Optional[bytes] = None,
        request_timeout: int = 30,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        """
        Initialize Kubernetes client for a context or for raw kubeconfig bytes.

        Args:
            context: Kubernetes context name
            kubeconfig: Kubeconfig content, e.g. as returned by the provider
            request_timeout: API request timeout in seconds
            cancel_token: Interrupts waits between retried API calls
        """
        self.context = context
        self.cancel_token = cancel_token

        # Per-instance configuration to avoid affecting other clients
        configuration = client.Configuration()
        if kubeconfig is not None:
            config.load_kube_config_from_dict(
                yaml.safe_load(kubeconfig),
                context=context,
                client_configuration=configuration,
            )
        else:
            config.load_kube_config(context=context, client_configuration=configuration)
        configuration.retries = 3
        configuration.timeout = request_timeout

        api_client = client.ApiClient(configuration)
        self.core_v1 = client.CoreV1Api(api_client)
        self.apps_v1 = client.AppsV1Api(api_client)
        self.rbac_v1 = client.RbacAuthorizationV1Api(api_client)
        self.custom_api = client.CustomObjectsApi(api_client)

        logger.info(
            "Initialized Kubernetes client for context: %s (timeout: %ss)",
            context or "default",
            request_timeout,
        )

    def _read(self, reader: Callable[..., Any], **kwargs: Any) -> Optional[Dict]:
        try:
            return _to_dict(reader(**kwargs))
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    # =============================
    # Core, apps and RBAC reads
    # =============================
    @translate_api_errors
    @retry_api_call
    def get_deployment(self, namespace: str, name: str) -> Optional[Dict]:
        """Get a Deployment as dict or None if not found."""
        InputValidator.validate_kubernetes_namespace(namespace)
        InputValidator.validate_kubernetes_name(name, "deployment")
        return self._read(self.apps_v1.read_namespaced_deployment, name=name, namespace=namespace)

    @translate_api_errors
    @retry_api_call
    def get_configmap(self, namespace: str, name: str) -> Optional[Dict]:
        """Get a ConfigMap as dict or None if not found."""
        InputValidator.validate_kubernetes_namespace(namespace)
        InputValidator.validate_kubernetes_name(name, "ConfigMap")
        return self._read(self.core_v1.read_namespaced_config_map, name=name, namespace=namespace)

    @translate_api_errors
    @retry_api_call
    def get_secret(self, namespace: str, name: str) -> Optional[Dict]:
        """Get a Secret as dict or None if not found."""
        InputValidator.validate_kubernetes_namespace(namespace)
        InputValidator.validate_kubernetes_name(name, "secret")
        return self._read(self.core_v1.read_namespaced_secret, name=name, namespace=namespace)

    @translate_api_errors
    @retry_api_call
    def get_role(self, namespace: str, name: str) -> Optional[Dict]:
        InputValidator.validate_kubernetes_namespace(namespace)
        InputValidator.validate_rbac_name(name, "role")
        return self._read(self.rbac_v1.read_namespaced_role, name=name, namespace=namespace)

    @translate_api_errors
    @retry_api_call
    def get_role_binding(self, namespace: str, name: str) -> Optional[Dict]:
        InputValidator.validate_kubernetes_namespace(namespace)
        InputValidator.validate_rbac_name(name, "roleBinding")
        return self._read(self.rbac_v1.read_namespaced_role_binding, name=name, namespace=namespace)

    @translate_api_errors
    @retry_api_call
    def get_cluster_role(self, name: str) -> Optional[Dict]:
        InputValidator.validate_rbac_name(name, "clusterRole")
        return self._read(self.rbac_v1.read_cluster_role, name=name)

    @translate_api_errors
    @retry_api_call
    def get_cluster_role_binding(self, name: str) -> Optional[Dict]:
        InputValidator.validate_rbac_name(name, "clusterRoleBinding")
        return self._read(self.rbac_v1.read_cluster_role_binding, name=name)

    # =============================
    # Custom resources
    # =============================
    @translate_api_errors
    @retry_api_call
    def get_custom_resource(
        self,
        group: str,
        version: str,
        plural: str,
        name: str,
        namespace: Optional[str] = None,
    ) -> Optional[Dict]:
        """
        Get a custom resource.

        Args:
            group: API group (e.g., 'operators.coreos.com')
            version: API version (e.g., 'v1alpha1')
            plural: Resource plural (e.g., 'subscriptions')
            name: Resource name
            namespace: Namespace (None for cluster-scoped)

        Returns:
            Resource dict or None if not found
        """
        InputValidator.validate_kubernetes_name(name, "custom resource")
        if namespace:
            InputValidator.validate_kubernetes_namespace(namespace)
            return self._read(
                self.custom_api.get_namespaced_custom_object,
                group=group,
                version=version,
                namespace=namespace,
                plural=plural,
                name=name,
            )
        return self._read(
            self.custom_api.get_cluster_custom_object,
            group=group,
            version=version,
            plural=plural,
            name=name,
        )

    @translate_api_errors
    @retry_api_call
    def list_custom_resources(
        self,
        group: str,
        version: str,
        plural: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict]:
        """List custom resources, following continue tokens."""
        items: List[Dict] = []
        continue_token: Optional[str] = None

        while True:
            try:
                if namespace:
                    result = self.custom_api.list_namespaced_custom_object(
                        group=group,
                        version=version,
                        namespace=namespace,
                        plural=plural,
                        label_selector=label_selector,
                        _continue=continue_token,
                    )
                else:
                    result = self.custom_api.list_cluster_custom_object(
                        group=group,
                        version=version,
                        plural=plural,
                        label_selector=label_selector,
                        _continue=continue_token,
                    )
            except ApiException as e:
                if e.status == 404:
                    return []
                raise

            items.extend(result.get("items", []))

            metadata = result.get("metadata") or {}
            continue_token = metadata.get("continue")

            if not continue_token:
                break

        return items

    @translate_api_errors
    @retry_api_call
    def create_custom_resource(
        self,
        group: str,
        version: str,
        plural: str,
        body: Dict[str, Any],
        namespace: Optional[str] = None,
    ) -> Dict:
        """Create a custom resource and return it."""
        resource_name = body.get("metadata", {}).get("name")
        if resource_name:
            InputValidator.validate_kubernetes_name(resource_name, "custom resource")

        if namespace:
            InputValidator.validate_kubernetes_namespace(namespace)
            return self.custom_api.create_namespaced_custom_object(
                group=group,
                version=version,
                namespace=namespace,
                plural=plural,
                body=body,
            )
        return self.custom_api.create_cluster_custom_object(group=group, version=version, plural=plural, body=body)

    @translate_api_errors
    @retry_api_call
    def replace_custom_resource(
        self,
        group: str,
        version: str,
        plural: str,
        name: str,
        body: Dict[str, Any],
        namespace: Optional[str] = None,
    ) -> Dict:
        """Replace (update) a custom resource; ``body`` must carry its resourceVersion."""
        InputValidator.validate_kubernetes_name(name, "custom resource")
        logger.debug("KUBE_CLIENT replace_custom_resource: plural=%s, name=%s, namespace=%s", plural, name, namespace)

        if namespace:
            InputValidator.validate_kubernetes_namespace(namespace)
            return self.custom_api.replace_namespaced_custom_object(
                group=group,
                version=version,
                namespace=namespace,
                plural=plural,
                name=name,
                body=body,
            )
        return self.custom_api.replace_cluster_custom_object(
            group=group, version=version, plural=plural, name=name, body=body
        )

    @translate_api_errors
    @retry_api_call
    def delete_custom_resource(
        self,
        group: str,
        version: str,
        plural: str,
        name: str,
        namespace: Optional[str] = None,
    ) -> bool:
        """Delete a custom resource.

        Returns:
            True if deleted, False if it was already absent
        """
        InputValidator.validate_kubernetes_name(name, "custom resource")

        try:
            if namespace:
                InputValidator.validate_kubernetes_namespace(namespace)
                self.custom_api.delete_namespaced_custom_object(
                    group=group,
                    version=version,
                    namespace=namespace,
                    plural=plural,
                    name=name,
                )
            else:
                self.custom_api.delete_cluster_custom_object(group=group, version=version, plural=plural, name=name)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise

    # =============================
    # Operator Lifecycle Manager helpers
    # =============================
    def get_subscription(self, namespace: str, name: str) -> Optional[Dict]:
        return self.get_custom_resource(OLM_GROUP, OLM_VERSION, SUBSCRIPTION_PLURAL, name, namespace=namespace)

    def create_subscription(self, namespace: str, body: Dict[str, Any]) -> Dict:
        return self.create_custom_resource(OLM_GROUP, OLM_VERSION, SUBSCRIPTION_PLURAL, body, namespace=namespace)

    def update_subscription(self, namespace: str, subscription: Dict[str, Any]) -> Dict:
        name = subscription["metadata"]["name"]
        return self.replace_custom_resource(
            OLM_GROUP, OLM_VERSION, SUBSCRIPTION_PLURAL, name, subscription, namespace=namespace
        )

    def delete_subscription(self, namespace: str, name: str) -> bool:
        return self.delete_custom_resource(OLM_GROUP, OLM_VERSION, SUBSCRIPTION_PLURAL, name, namespace=namespace)

    def get_install_plan(self, namespace: str, name: str) -> Optional[Dict]:
        return self.get_custom_resource(OLM_GROUP, OLM_VERSION, INSTALLPLAN_PLURAL, name, namespace=namespace)

    def update_install_plan(self, namespace: str, install_plan: Dict[str, Any]) -> Dict:
        name = install_plan["metadata"]["name"]
        return self.replace_custom_resource(
            OLM_GROUP, OLM_VERSION, INSTALLPLAN_PLURAL, name, install_plan, namespace=namespace
        )

    def get_csv(self, namespace: str, name: str) -> Optional[Dict]:
        return self.get_custom_resource(OLM_GROUP, OLM_VERSION, CSV_PLURAL, name, namespace=namespace)

    def list_csvs(self, namespace: str) -> List[Dict]:
        return self.list_custom_resources(OLM_GROUP, OLM_VERSION, CSV_PLURAL, namespace=namespace)

    def delete_csv(self, namespace: str, name: str) -> bool:
        return self.delete_custom_resource(OLM_GROUP, OLM_VERSION, CSV_PLURAL, name, namespace=namespace)
