"""
Cluster configuration inputs.

Values are read from ``OSD_*`` environment variables, an optional YAML file
and CLI overrides, in that order of increasing priority. A ``ClusterConfig``
is immutable; operations that resolve a value (such as a random region)
return a new copy instead of changing shared state.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from lib.constants import DEFAULT_FLAVOUR, DEFAULT_POLLING_TIMEOUT_MINUTES, NO_JOB_ID, RANDOM_REGION
from lib.exceptions import ConfigurationError

logger = logging.getLogger("osd_lifecycle")

ENV_PREFIX = "OSD_"


def parse_addon_ids(value: Any) -> Tuple[str, ...]:
    """Split a comma-separated addon id list, dropping blanks."""
    if not value:
        return ()
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = str(value).split(",")
    return tuple(item.strip() for item in items if str(item).strip())


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ClusterConfig:
    """Named configuration values consumed by the lifecycle engine."""

    region: str = RANDOM_REGION
    cloud_provider: str = "aws"
    multi_az: bool = False
    compute_machine_type: str = ""
    version: str = ""
    flavour: str = DEFAULT_FLAVOUR
    expiry_minutes: int = 0
    addon_ids_at_creation: Tuple[str, ...] = ()
    addon_ids: Tuple[str, ...] = ()
    polling_timeout: float = DEFAULT_POLLING_TIMEOUT_MINUTES
    job_id: int = NO_JOB_ID
    user_override: str = ""

    @property
    def is_random_region(self) -> bool:
        return self.region == RANDOM_REGION

    @property
    def running_in_ci(self) -> bool:
        return self.job_id != NO_JOB_ID

    def merged(self, **overrides: Any) -> "ClusterConfig":
        """Return a copy with the given non-None values replaced."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return ClusterConfig.from_mapping(values, base=self)

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in dataclasses.fields(cls)]

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], base: Optional["ClusterConfig"] = None) -> "ClusterConfig":
        """Build a config from loosely-typed values (file, env or CLI)."""
        base = base or cls()
        known = set(cls.field_names())
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

        converted: Dict[str, Any] = {}
        try:
            for key, value in values.items():
                if key in ("addon_ids", "addon_ids_at_creation"):
                    converted[key] = parse_addon_ids(value)
                elif key == "multi_az":
                    converted[key] = _parse_bool(value)
                elif key in ("expiry_minutes", "job_id"):
                    converted[key] = int(value)
                elif key == "polling_timeout":
                    converted[key] = float(value)
                else:
                    converted[key] = "" if value is None else str(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}") from e

        return dataclasses.replace(base, **converted)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClusterConfig":
        """Read ``OSD_<FIELD>`` variables, e.g. ``OSD_REGION`` or ``OSD_MULTI_AZ``."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.field_names():
            env_name = ENV_PREFIX + name.upper()
            if env_name in environ:
                values[name] = environ[env_name]
        return cls.from_mapping(values)

    @classmethod
    def from_file(cls, path: str, base: Optional["ClusterConfig"] = None) -> "ClusterConfig":
        """Load a YAML mapping of configuration values."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")

        logger.debug("Loaded configuration keys from %s: %s", path, sorted(data))
        return cls.from_mapping(data, base=base)
