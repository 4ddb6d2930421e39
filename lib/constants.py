"""Centralized constants for OSD cluster lifecycle automation."""

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPT = 130

# Provider API
OCM_DEFAULT_URL = "https://api.openshift.com"
OCM_API_PREFIX = "/api/clusters_mgmt/v1"
OCM_REQUEST_TIMEOUT = 30

# Retry settings for provider calls
PROVIDER_RETRY_ATTEMPTS = 5
PROVIDER_RETRY_DELAY = 2  # seconds between attempts

# Cluster creation
DEFAULT_FLAVOUR = "osd-4"
RANDOM_REGION = "random"
# Must stay divisible by the number of availability zones (3)
MULTI_AZ_COMPUTE_NODES = 9
NO_JOB_ID = -1
CI_OWNER = "prow"

# Ownership properties attached to clusters
PROPERTY_MADE_BY = "MadeByOSDe2e"
PROPERTY_OWNED_BY = "OwnedBy"

# Polling (in seconds unless noted)
DEFAULT_POLLING_TIMEOUT_MINUTES = 30
RESOURCE_POLL_INTERVAL = 5
LOCKFILE_POLL_INTERVAL = 30

INSTALLPLAN_GC_TIMEOUT = 300
INSTALLPLAN_GC_INTERVAL = 10

INSTALLPLAN_REF_TIMEOUT = 300
INSTALLPLAN_REF_INTERVAL = 5

CSV_INSTALL_TIMEOUT = 900
CSV_INSTALL_INTERVAL = 5

# Operator Lifecycle Manager resources
OLM_GROUP = "operators.coreos.com"
OLM_VERSION = "v1alpha1"
SUBSCRIPTION_PLURAL = "subscriptions"
INSTALLPLAN_PLURAL = "installplans"
CSV_PLURAL = "clusterserviceversions"

CSV_PHASE_SUCCEEDED = "Succeeded"
APPROVAL_MANUAL = "Manual"
APPROVAL_AUTOMATIC = "Automatic"
