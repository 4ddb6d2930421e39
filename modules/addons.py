"""Idempotent addon installation on provider clusters."""

from __future__ import annotations

import copy
import functools
import logging
from typing import Iterable

from lib.validation import InputValidator

from .provider import OCMProvider

logger = logging.getLogger("osd_lifecycle")


class AddonInstaller:
    """Installs catalog addons that a cluster does not have yet."""

    def __init__(self, provider: OCMProvider) -> None:
        self.provider = provider

    def install(self, cluster_id: str, addon_ids: Iterable[str]) -> int:
        """Install each addon in order and return how many were newly installed.

        Already-installed addons are skipped. The first error stops the loop;
        addons after it are not attempted.
        """
        ocm = self.provider.ocm
        installed = 0

        for addon_id in addon_ids:
            InputValidator.validate_addon_id(addon_id)

            addon = self.provider.call(f"retrieve addon '{addon_id}'", functools.partial(ocm.get_addon, addon_id))

            cluster = self.provider.get_cluster(cluster_id)
            if cluster.has_addon(addon_id):
                logger.info("Addon %s is already installed. Skipping.", addon_id)
                continue

            if not addon.get("enabled"):
                logger.warning("Addon %s is not enabled in the catalog. Skipping.", addon_id)
                continue

            body = {"id": addon_id, "addon": copy.deepcopy(addon)}
            self.provider.call(
                f"install addon '{addon_id}' on cluster '{cluster_id}'",
                functools.partial(ocm.add_cluster_addon, cluster_id, body),
            )
            logger.info("Installed Addon: %s", addon_id)
            installed += 1

        return installed
