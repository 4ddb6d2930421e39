"""Pass/fail reporting for cluster verification checks."""

import logging
from typing import Any, Dict, List

logger = logging.getLogger("osd_lifecycle")


class CheckReporter:
    """Collects check results and handles summary logging."""

    def __init__(self) -> None:
        self.results: List[Dict[str, Any]] = []

    def add_result(self, check: str, passed: bool, message: str) -> None:
        """Add a check result.

        Args:
            check: Name of the check
            passed: Whether the check passed
            message: Descriptive message, or the error text for a failure
        """
        self.results.append({"check": check, "passed": passed, "message": message})

        if passed:
            logger.info("✓ %s: %s", check, message)
        else:
            logger.error("✗ %s: %s", check, message)

    def failures(self) -> List[Dict[str, Any]]:
        """Get list of failed checks."""
        return [r for r in self.results if not r["passed"]]

    @property
    def all_passed(self) -> bool:
        return not self.failures()

    def print_summary(self) -> None:
        """Print check summary to the log."""
        passed = sum(1 for r in self.results if r["passed"])
        total = len(self.results)
        failed = self.failures()

        logger.info("\n" + "=" * 60)
        logger.info("Verification Summary: %s/%s checks passed", passed, total)

        if failed:
            logger.error("%s check(s) failed!", len(failed))
            logger.info("\nFailed checks:")
            for result in failed:
                logger.error("  ✗ %s: %s", result["check"], result["message"])
        else:
            logger.info("All checks passed!")

        logger.info("=" * 60 + "\n")
