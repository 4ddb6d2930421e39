"""
Module package initialization.
"""

from lib.exceptions import ValidationError

from .addons import AddonInstaller
from .operator_checks import CsvMatchMode, OperatorSpec, OperatorVerifier
from .operator_upgrade import OperatorUpgradeProtocol
from .provider import CreateResult, OCMProvider
from .reporter import CheckReporter

__all__ = [
    "ValidationError",
    "OCMProvider",
    "CreateResult",
    "AddonInstaller",
    "OperatorVerifier",
    "OperatorSpec",
    "CsvMatchMode",
    "OperatorUpgradeProtocol",
    "CheckReporter",
]
