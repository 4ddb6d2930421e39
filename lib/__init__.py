"""
Library package for OSD cluster lifecycle automation.
"""

# Import version from lightweight module (avoids importing heavy deps at build time)
from ._version import __version__, __version_date__

from .config import ClusterConfig, parse_addon_ids
from .exceptions import (
    APIError,
    BuildError,
    ConfigurationError,
    ErrorKind,
    FatalError,
    LifecycleError,
    MalformedResponseError,
    PermissionDeniedError,
    PollTimeoutError,
    ProviderError,
    RetryExhaustedError,
    TransientError,
    TransportError,
    ValidationError,
    VerificationError,
)
from .kube_client import KubeClient
from .models import Cluster, ClusterState, ocm_state_to_cluster_state
from .ocm_client import OCMClient, OCMResponse
from .retry import RetryExecutor, RetryPolicy
from .utils import CancellationToken, Phase, StateManager, format_duration, setup_logging
from .waiter import ConvergencePoller, PollSpec, poll_until

__all__ = [
    "__version__",
    "__version_date__",
    "ClusterConfig",
    "parse_addon_ids",
    "KubeClient",
    "OCMClient",
    "OCMResponse",
    "Cluster",
    "ClusterState",
    "ocm_state_to_cluster_state",
    "RetryExecutor",
    "RetryPolicy",
    "ConvergencePoller",
    "PollSpec",
    "poll_until",
    "CancellationToken",
    "Phase",
    "StateManager",
    "setup_logging",
    "format_duration",
    "LifecycleError",
    "TransientError",
    "FatalError",
    "APIError",
    "ErrorKind",
    "TransportError",
    "ProviderError",
    "BuildError",
    "VerificationError",
    "MalformedResponseError",
    "PermissionDeniedError",
    "PollTimeoutError",
    "RetryExhaustedError",
    "ValidationError",
    "ConfigurationError",
]
