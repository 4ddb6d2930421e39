#!/usr/bin/env python3
"""
OSD Cluster Lifecycle Automation

Drives the lifecycle of an OpenShift Dedicated cluster through the OpenShift
Cluster Manager and verifies, against the cluster itself, that requested
changes have converged.

Features:
- Cluster create (random region selection, multi-AZ sizing, expiry, ownership tags)
- Scale, extend expiry and delete with read-back verification
- Idempotent addon installation
- Operator convergence checks and InstallPlan-driven upgrade verification
- Bounded retries for provider calls, bounded polling for cluster checks
- Run state kept in a state file (cluster id, resolved region, errors)
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import yaml

from lib import (
    ClusterConfig,
    KubeClient,
    OCMClient,
    Phase,
    StateManager,
    __version__,
    __version_date__,
    setup_logging,
)
from lib.constants import EXIT_FAILURE, EXIT_INTERRUPT, EXIT_SUCCESS, OCM_DEFAULT_URL
from lib.exceptions import ConfigurationError, LifecycleError, ValidationError
from lib.models import format_timestamp
from lib.utils import confirm_action
from lib.validation import InputValidator
from modules import AddonInstaller, CheckReporter, OCMProvider, OperatorSpec, OperatorVerifier
from modules.operator_checks import CsvMatchMode

STATE_DIR_ENV_VAR = "OSD_LIFECYCLE_STATE_DIR"
TOKEN_ENV_VAR = "OCM_TOKEN"

CommandHandler = Callable[[argparse.Namespace, StateManager, ClusterConfig, logging.Logger], bool]


def _add_cluster_id(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--cluster-id",
        help="Cluster id (defaults to the id recorded in the state file)",
    )


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="OSD Cluster Lifecycle Automation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a multi-AZ cluster in a random enabled region
  %(prog)s create --name e2e-1 --region random --multi-az --expiry-minutes 360

  # Scale the cluster recorded in the state file
  %(prog)s scale --compute-nodes 6

  # Extend the expiry by two and a half hours
  %(prog)s extend-expiry --hours 2 --minutes 30

  # Install addons that are not installed yet
  %(prog)s install-addons --addon-ids dvo,rhoam

  # Verify an operator and its upgrade path
  %(prog)s verify-operator --operator-file dvo.yaml --upgrade
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__} ({__version_date__})",
    )
    parser.add_argument("--config", help="YAML file with cluster configuration values")
    parser.add_argument(
        "--state-file",
        default=None,
        help=(
            "Path to state file "
            "(defaults to $OSD_LIFECYCLE_STATE_DIR/osd-lifecycle.json when set, otherwise .state/...)"
        ),
    )
    parser.add_argument("--ocm-url", default=OCM_DEFAULT_URL, help="OpenShift Cluster Manager API URL")
    parser.add_argument("--token", default=None, help=f"OCM access token (default: ${TOKEN_ENV_VAR})")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log output format (text or json)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a cluster")
    create.add_argument("--name", required=True, help="Cluster name")
    create.add_argument("--region", help="Region id, or 'random' to pick an enabled region")
    create.add_argument("--cloud-provider", help="Cloud provider id (e.g. aws, gcp)")
    create.add_argument("--version", help="OpenShift version id")
    create.add_argument("--multi-az", action="store_true", default=None, help="Spread the cluster over 3 zones")
    create.add_argument("--compute-machine-type", help="Compute node machine type")
    create.add_argument("--expiry-minutes", type=int, help="Minutes until the provider deletes the cluster")
    create.add_argument("--addons-at-creation", help="Comma-separated addon ids to install with the cluster")

    scale = sub.add_parser("scale", help="Scale compute nodes")
    _add_cluster_id(scale)
    scale.add_argument("--compute-nodes", type=int, required=True, help="Desired number of compute nodes")

    delete = sub.add_parser("delete", help="Delete a cluster")
    _add_cluster_id(delete)
    delete.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    extend = sub.add_parser("extend-expiry", help="Extend the cluster expiration timestamp")
    _add_cluster_id(extend)
    extend.add_argument("--hours", type=int, default=0)
    extend.add_argument("--minutes", type=int, default=0)
    extend.add_argument("--seconds", type=int, default=0)

    get = sub.add_parser("get", help="Show a cluster")
    _add_cluster_id(get)

    list_cmd = sub.add_parser("list", help="List clusters")
    list_cmd.add_argument("--query", default="", help="Provider search expression")

    metrics = sub.add_parser("metrics", help="Show cluster metrics")
    _add_cluster_id(metrics)

    kubeconfig = sub.add_parser("kubeconfig", help="Write the cluster kubeconfig")
    _add_cluster_id(kubeconfig)
    kubeconfig.add_argument("--output", required=True, help="File to write the kubeconfig to")

    addons = sub.add_parser("install-addons", help="Install addons that are not installed yet")
    _add_cluster_id(addons)
    addons.add_argument("--addon-ids", help="Comma-separated addon ids (default: addon_ids from config)")

    for name, help_text in (
        ("verify-operator", "Check that an operator converged on the cluster"),
        ("upgrade-operator", "Verify an operator upgrades from its previous version"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        _add_cluster_id(cmd)
        cmd.add_argument("--operator-file", required=True, help="YAML operator definition")
        cmd.add_argument("--context", help="Kubernetes context (default: kubeconfig from the provider)")
        cmd.add_argument(
            "--csv-match",
            choices=[m.value for m in CsvMatchMode],
            default=CsvMatchMode.LAST_ITEM.value,
            help="Match the CSV display name against the last listed CSV or any of them",
        )
        if name == "verify-operator":
            cmd.add_argument("--upgrade", action="store_true", help="Also run the upgrade check")

    args = parser.parse_args(argv)
    if getattr(args, "addon_ids", None):
        args.addon_ids = [a.strip() for a in args.addon_ids.split(",") if a.strip()]
    return args


def validate_args(args: argparse.Namespace, logger: logging.Logger) -> None:
    """Validate argument combinations and input values."""
    try:
        InputValidator.validate_all_cli_args(args)

        if not getattr(args, "state_file", None):
            env_state_dir = os.environ.get(STATE_DIR_ENV_VAR)
            if env_state_dir and env_state_dir.strip():
                InputValidator.validate_safe_filesystem_path(env_state_dir.strip(), STATE_DIR_ENV_VAR)
    except ValidationError as e:
        logger.error("Validation error: %s", str(e))
        sys.exit(EXIT_FAILURE)


def load_config(args: argparse.Namespace, state: Optional[StateManager] = None) -> ClusterConfig:
    """Environment < config file < CLI flags.

    A region resolved by an earlier run replaces ``"random"`` so reruns
    against the same state file stay in one region.
    """
    config = ClusterConfig.from_env()
    if args.config:
        config = ClusterConfig.from_file(args.config, base=config)

    config = config.merged(
        region=getattr(args, "region", None),
        cloud_provider=getattr(args, "cloud_provider", None),
        version=getattr(args, "version", None),
        multi_az=getattr(args, "multi_az", None),
        compute_machine_type=getattr(args, "compute_machine_type", None),
        expiry_minutes=getattr(args, "expiry_minutes", None),
        addon_ids_at_creation=getattr(args, "addons_at_creation", None),
        addon_ids=getattr(args, "addon_ids", None),
    )
    if config.is_random_region and state is not None and state.get_config("region"):
        config = config.merged(region=state.get_config("region"))
    return config


def _build_provider(args: argparse.Namespace) -> OCMProvider:
    token = args.token or os.environ.get(TOKEN_ENV_VAR)
    if not token:
        raise ConfigurationError(f"An OCM token is required (--token or ${TOKEN_ENV_VAR})")
    return OCMProvider(OCMClient(token, url=args.ocm_url))


def _cluster_id(args: argparse.Namespace, state: StateManager) -> str:
    cluster_id = getattr(args, "cluster_id", None) or state.get_config("cluster_id")
    if not cluster_id:
        raise ConfigurationError("No cluster id given and none recorded in the state file")
    return cluster_id


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def run_create(args, state, config, logger) -> bool:
    provider = _build_provider(args)
    result = provider.create_cluster(args.name, config)

    # Later runs reuse the resolved region in place of "random"
    state.set_config("cluster_id", result.cluster_id)
    state.set_config("cluster_name", args.name)
    state.set_config("region", result.region)
    state.set_phase(Phase.CREATED)

    logger.info("Cluster %s created with id %s in %s", args.name, result.cluster_id, result.region)
    print(result.cluster_id)
    return True


def run_scale(args, state, config, logger) -> bool:
    provider = _build_provider(args)
    cluster = provider.scale_cluster(_cluster_id(args, state), args.compute_nodes)
    logger.info("Cluster %s has %d compute nodes", cluster.id, cluster.compute_nodes)
    return True


def run_delete(args, state, config, logger) -> bool:
    cluster_id = _cluster_id(args, state)
    if not args.yes and not confirm_action(f"Delete cluster {cluster_id}?"):
        logger.info("Deletion cancelled")
        return False

    _build_provider(args).delete_cluster(cluster_id)
    state.set_phase(Phase.DELETED)
    return True


def run_extend_expiry(args, state, config, logger) -> bool:
    provider = _build_provider(args)
    cluster = provider.extend_expiry(_cluster_id(args, state), args.hours, args.minutes, args.seconds)
    logger.info("Cluster %s now expires at %s", cluster.id, format_timestamp(cluster.expiration_timestamp))
    return True


def _cluster_summary(cluster) -> Dict:
    return {
        "id": cluster.id,
        "name": cluster.name,
        "state": cluster.state.value,
        "region": cluster.region,
        "cloud_provider": cluster.cloud_provider,
        "version": cluster.version,
        "multi_az": cluster.multi_az,
        "compute_nodes": cluster.compute_nodes,
        "expiration_timestamp": (
            format_timestamp(cluster.expiration_timestamp) if cluster.expiration_timestamp else None
        ),
        "addons": sorted(cluster.addons),
        "properties": cluster.properties,
    }


def run_get(args, state, config, logger) -> bool:
    cluster = _build_provider(args).get_cluster(_cluster_id(args, state))
    _print_json(_cluster_summary(cluster))
    return True


def run_list(args, state, config, logger) -> bool:
    clusters = _build_provider(args).list_clusters(args.query)
    _print_json([_cluster_summary(c) for c in clusters])
    return True


def run_metrics(args, state, config, logger) -> bool:
    _print_json(_build_provider(args).get_metrics(_cluster_id(args, state)))
    return True


def run_kubeconfig(args, state, config, logger) -> bool:
    InputValidator.validate_safe_filesystem_path(args.output, "--output")
    kubeconfig = _build_provider(args).cluster_kubeconfig(_cluster_id(args, state))
    with open(args.output, "wb") as f:
        f.write(kubeconfig)
    os.chmod(args.output, 0o600)
    logger.info("Kubeconfig written to %s", args.output)
    return True


def run_install_addons(args, state, config, logger) -> bool:
    if not config.addon_ids:
        logger.info("No addons requested")
        return True

    installer = AddonInstaller(_build_provider(args))
    count = installer.install(_cluster_id(args, state), config.addon_ids)
    logger.info("Installed %d new addon(s)", count)
    state.mark_step_completed("install_addons")
    state.set_phase(Phase.ADDONS_INSTALLED)
    return True


def _load_operator(path: str) -> OperatorSpec:
    InputValidator.validate_safe_filesystem_path(path, "--operator-file")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read operator file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Operator file {path} must contain a mapping")
    return OperatorSpec.from_mapping(data)


def _build_kube_client(args, state) -> KubeClient:
    if args.context:
        return KubeClient(context=args.context)
    kubeconfig = _build_provider(args).cluster_kubeconfig(_cluster_id(args, state))
    return KubeClient(kubeconfig=kubeconfig)


def _run_operator_checks(args, state, config, logger, upgrade: bool, only_upgrade: bool) -> bool:
    operator = _load_operator(args.operator_file)
    reporter = CheckReporter()
    verifier = OperatorVerifier(
        _build_kube_client(args, state),
        reporter,
        polling_timeout=config.polling_timeout,
        csv_match_mode=CsvMatchMode(args.csv_match),
    )

    if only_upgrade:
        if not (operator.subscription and operator.previous_csv):
            raise ConfigurationError("Upgrade check requires 'subscription' and 'previous_csv'")
        verifier.check_upgrade(operator.namespace, operator.subscription, operator.previous_csv)
    else:
        verifier.verify(operator, include_upgrade=upgrade)

    reporter.print_summary()
    passed = reporter.all_passed
    if passed:
        state.set_phase(Phase.UPGRADED if (upgrade or only_upgrade) else Phase.VERIFIED)
    return passed


def run_verify_operator(args, state, config, logger) -> bool:
    return _run_operator_checks(args, state, config, logger, upgrade=args.upgrade, only_upgrade=False)


def run_upgrade_operator(args, state, config, logger) -> bool:
    return _run_operator_checks(args, state, config, logger, upgrade=True, only_upgrade=True)


COMMANDS: Dict[str, CommandHandler] = {
    "create": run_create,
    "scale": run_scale,
    "delete": run_delete,
    "extend-expiry": run_extend_expiry,
    "get": run_get,
    "list": run_list,
    "metrics": run_metrics,
    "kubeconfig": run_kubeconfig,
    "install-addons": run_install_addons,
    "verify-operator": run_verify_operator,
    "upgrade-operator": run_upgrade_operator,
}


def _get_default_state_dir() -> str:
    env_state_dir = os.environ.get(STATE_DIR_ENV_VAR)
    if env_state_dir and env_state_dir.strip():
        return env_state_dir.strip()
    return ".state"


def _resolve_state_file(requested_path: Optional[str]) -> str:
    if requested_path:
        return requested_path
    return os.path.join(_get_default_state_dir(), "osd-lifecycle.json")


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Set up logging early so validate_args can use logger
    logger = setup_logging(args.verbose, args.log_format)

    validate_args(args, logger)
    args.state_file = _resolve_state_file(args.state_file)

    logger.info("OSD Cluster Lifecycle Automation v%s (%s)", __version__, __version_date__)
    logger.info("Started at: %s", datetime.now(timezone.utc).isoformat())
    logger.debug("Using state file: %s", args.state_file)

    state = StateManager(args.state_file)

    try:
        config = load_config(args, state)
        success = COMMANDS[args.command](args, state, config, logger)
    except KeyboardInterrupt:
        logger.warning("\n\nOperation interrupted by user")
        logger.info("State saved to: %s", args.state_file)
        sys.exit(EXIT_INTERRUPT)
    except LifecycleError as exc:
        logger.error("\n✗ %s failed: %s", args.command, exc, exc_info=args.verbose)
        state.add_error(str(exc))
        state.set_phase(Phase.FAILED)
        sys.exit(EXIT_FAILURE)

    if success:
        logger.info("\n✓ Operation completed successfully!")
        sys.exit(EXIT_SUCCESS)

    logger.error("\n✗ Operation failed!")
    sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
