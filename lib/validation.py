#!/usr/bin/env python3
"""
Input validation utilities for OSD cluster lifecycle automation.

This module validates CLI arguments, Kubernetes resource names, provider
identifiers, and filesystem paths before they reach a remote API.

Features:
- Kubernetes resource name validation (DNS-1123 subdomain rules)
- Kubernetes namespace validation (DNS-1123 label rules)
- Cluster name, cluster id and addon id validation
- Context name validation
- Filesystem path validation
"""

import logging
import os
import re
from typing import Pattern

from lib.exceptions import SecurityValidationError, ValidationError

logger = logging.getLogger("osd_lifecycle")

# DNS-1123 subdomain format: contains only lowercase alphanumeric characters, '-' or '.',
# starts with an alphanumeric character, ends with an alphanumeric character
K8S_NAME_PATTERN: Pattern[str] = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
K8S_NAME_MAX_LENGTH = 253

# RFC 1123 label format, must start with a letter
K8S_NAMESPACE_PATTERN: Pattern[str] = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")
K8S_NAMESPACE_MAX_LENGTH = 63

# OCM cluster names are DNS-1035 labels
CLUSTER_NAME_PATTERN: Pattern[str] = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")
CLUSTER_NAME_MAX_LENGTH = 54

CLUSTER_ID_PATTERN: Pattern[str] = re.compile(r"^[a-zA-Z0-9]+$")
ADDON_ID_PATTERN: Pattern[str] = re.compile(r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$")

# Allows default oc login contexts like 'admin/api-ci-aws' or 'default/api.example.com:6443/admin'
CONTEXT_NAME_PATTERN: Pattern[str] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:\-/]*[A-Za-z0-9]$|^[A-Za-z0-9]$")
CONTEXT_NAME_MAX_LENGTH = 128


class InputValidator:
    """Input validation for cluster lifecycle operations."""

    @staticmethod
    def validate_kubernetes_name(name: str, resource_type: str = "resource") -> None:
        """
        Validate Kubernetes resource name according to DNS-1123 subdomain rules.

        Args:
            name: The name to validate
            resource_type: Type of resource for error messages

        Raises:
            ValidationError: If name is invalid
        """
        if not name:
            raise ValidationError(f"{resource_type} name cannot be empty")

        if len(name) > K8S_NAME_MAX_LENGTH:
            raise ValidationError(
                f"{resource_type} name '{name}' exceeds maximum length of {K8S_NAME_MAX_LENGTH} characters"
            )

        if not K8S_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Invalid {resource_type} name '{name}'. "
                f"Must consist of lowercase alphanumeric characters, '-', or '.', "
                f"must start and end with an alphanumeric character (DNS-1123 subdomain)"
            )

    @staticmethod
    def validate_rbac_name(name: str, resource_type: str = "role") -> None:
        """
        Validate an RBAC object name, which only has to be a valid path segment.

        Names such as 'system:openshift:scc:anyuid' are accepted.

        Raises:
            ValidationError: If name is invalid
        """
        if not name:
            raise ValidationError(f"{resource_type} name cannot be empty")

        if len(name) > K8S_NAME_MAX_LENGTH:
            raise ValidationError(
                f"{resource_type} name '{name}' exceeds maximum length of {K8S_NAME_MAX_LENGTH} characters"
            )

        if name in (".", ".."):
            raise ValidationError(f"Invalid {resource_type} name '{name}'. May not be '.' or '..'")

        if "/" in name or "%" in name:
            raise ValidationError(f"Invalid {resource_type} name '{name}'. May not contain '/' or '%'")

    @staticmethod
    def validate_kubernetes_namespace(namespace: str) -> None:
        """
        Validate Kubernetes namespace name according to DNS-1123 label rules.

        Raises:
            ValidationError: If namespace is invalid
        """
        if not namespace:
            raise ValidationError("Namespace cannot be empty")

        if len(namespace) > K8S_NAMESPACE_MAX_LENGTH:
            raise ValidationError(
                f"Namespace '{namespace}' exceeds maximum length of {K8S_NAMESPACE_MAX_LENGTH} characters"
            )

        if not K8S_NAMESPACE_PATTERN.match(namespace):
            raise ValidationError(
                f"Invalid namespace '{namespace}'. "
                f"Must consist of lower case alphanumeric characters or '-', "
                f"and must start and end with an alphanumeric character"
            )

    @staticmethod
    def validate_cluster_name(name: str) -> None:
        """Validate a cluster name before asking the provider to create it."""
        if not name:
            raise ValidationError("Cluster name cannot be empty")

        if len(name) > CLUSTER_NAME_MAX_LENGTH:
            raise ValidationError(
                f"Cluster name '{name}' exceeds maximum length of {CLUSTER_NAME_MAX_LENGTH} characters"
            )

        if not CLUSTER_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Invalid cluster name '{name}'. "
                f"Must start with a lowercase letter and contain only lowercase alphanumeric characters or '-'"
            )

    @staticmethod
    def validate_cluster_id(cluster_id: str) -> None:
        if not cluster_id or not CLUSTER_ID_PATTERN.match(cluster_id):
            raise ValidationError(f"Invalid cluster id '{cluster_id}'")

    @staticmethod
    def validate_addon_id(addon_id: str) -> None:
        if not addon_id or not ADDON_ID_PATTERN.match(addon_id):
            raise ValidationError(f"Invalid addon id '{addon_id}'")

    @staticmethod
    def validate_context_name(context: str) -> None:
        """
        Validate Kubernetes context name.

        Raises:
            ValidationError: If context name is invalid
        """
        if not context:
            raise ValidationError("Context name cannot be empty")

        if len(context) > CONTEXT_NAME_MAX_LENGTH:
            raise ValidationError(
                f"Context name '{context}' exceeds maximum length of {CONTEXT_NAME_MAX_LENGTH} characters"
            )

        if not CONTEXT_NAME_PATTERN.match(context):
            raise ValidationError(
                f"Invalid context name '{context}'. "
                f"Must consist of alphanumeric characters, '-', '_', '.', ':', or '/', "
                f"and must start and end with an alphanumeric character"
            )

    @staticmethod
    def validate_non_negative(value: int, field_name: str) -> None:
        if value < 0:
            raise ValidationError(f"{field_name} cannot be negative, got {value}")

    @staticmethod
    def validate_safe_filesystem_path(path: str, field_name: str) -> None:
        """
        Validate that a path is safe for filesystem operations.

        Args:
            path: The path to validate
            field_name: Name of the field for error messages

        Raises:
            SecurityValidationError: If path contains unsafe characters or patterns
            ValidationError: If path is empty
        """
        if not path:
            raise ValidationError(f"{field_name} path cannot be empty")

        if ".." in path.split("/"):
            raise SecurityValidationError(
                f"SECURITY: Path traversal attempt detected in {field_name} path '{path}'. "
                f"The '..' sequence is not allowed as a path component."
            )

        unsafe_chars = ["~", "$", "{", "}", "|", "&", ";", "<", ">", "`"]
        if any(char in path for char in unsafe_chars):
            raise SecurityValidationError(
                f"SECURITY: Invalid characters in {field_name} path '{path}'. "
                f"Disallowed patterns: {', '.join(unsafe_chars)}."
            )

        if path.startswith("/"):
            parent = os.path.dirname(path)
            if os.path.exists(path):
                resolved_path = os.path.realpath(path)
            elif parent and os.path.exists(parent):
                resolved_path = os.path.join(os.path.realpath(parent), os.path.basename(path))
            else:
                raise SecurityValidationError(
                    f"SECURITY: Absolute path '{path}' for {field_name} has a non-existent parent directory."
                )

            safe_prefixes = ["/tmp/", "/var/"]  # nosec B108 - path validation, not temp file usage
            cwd = os.getcwd()
            if cwd:
                safe_prefixes.append(os.path.realpath(cwd) + "/")
            home = os.path.expanduser("~")
            if home and home != "~":
                safe_prefixes.append(os.path.realpath(home) + "/")

            if not any(resolved_path.startswith(prefix) for prefix in safe_prefixes):
                raise SecurityValidationError(
                    f"SECURITY: Absolute path '{path}' is not allowed for {field_name}. "
                    f"Use relative paths or paths within /tmp, /var, workspace root, or home directory."
                )

    @staticmethod
    def validate_all_cli_args(args: object) -> None:
        """
        Validate all CLI arguments comprehensively.

        Args:
            args: Parsed CLI arguments object

        Raises:
            ValidationError: If any argument is invalid
        """
        if getattr(args, "state_file", None):
            InputValidator.validate_safe_filesystem_path(args.state_file, "--state-file")
        if getattr(args, "config", None):
            InputValidator.validate_safe_filesystem_path(args.config, "--config")
        if getattr(args, "context", None):
            InputValidator.validate_context_name(args.context)
        if getattr(args, "name", None):
            InputValidator.validate_cluster_name(args.name)
        if getattr(args, "cluster_id", None):
            InputValidator.validate_cluster_id(args.cluster_id)
        if getattr(args, "namespace", None):
            InputValidator.validate_kubernetes_namespace(args.namespace)

        for field_name in ("compute_nodes", "hours", "minutes", "seconds"):
            value = getattr(args, field_name, None)
            if isinstance(value, int):
                InputValidator.validate_non_negative(value, f"--{field_name.replace('_', '-')}")

        for addon_id in getattr(args, "addon_ids", None) or ():
            InputValidator.validate_addon_id(addon_id)
