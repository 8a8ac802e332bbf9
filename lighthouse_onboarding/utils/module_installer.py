import logging
import subprocess
import sys
from dataclasses import dataclass
from importlib import metadata
from typing import Dict, List, Optional

from ..exceptions import ModuleInstallError

logger = logging.getLogger(__name__)

# Registry of SDK distributions the provisioning workflow imports.
# Example:
# register_module(SdkModule(distribution="azure-mgmt-msi", min_version="7.0"))


@dataclass(frozen=True)
class SdkModule:
    distribution: str
    min_version: Optional[str] = None

    def requirement(self) -> str:
        if self.min_version:
            return f"{self.distribution}>={self.min_version}"
        return self.distribution


MODULE_REGISTRY: Dict[str, SdkModule] = {}


def register_module(module: SdkModule) -> None:
    """Register an SDK distribution in the global registry."""
    MODULE_REGISTRY[module.distribution] = module


def is_module_installed(distribution: str) -> bool:
    """Check if a distribution is installed in the running interpreter."""
    try:
        metadata.version(distribution)
    except metadata.PackageNotFoundError:
        return False
    return True


def missing_modules() -> List[SdkModule]:
    return [
        module
        for module in MODULE_REGISTRY.values()
        if not is_module_installed(module.distribution)
    ]


def install_modules(modules: List[SdkModule], timeout: int = 300) -> None:
    """
    Install distributions with pip into the running interpreter.

    Raises:
        ModuleInstallError: If pip fails or does not finish within timeout
    """
    names = [module.distribution for module in modules]
    cmd = [sys.executable, "-m", "pip", "install", "--quiet"] + [
        module.requirement() for module in modules
    ]
    logger.info(f"Installing SDK modules: {', '.join(names)}")
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise ModuleInstallError(
            f"pip did not finish within {timeout}s", modules=names, cause=e
        ) from e
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip().splitlines()
        raise ModuleInstallError(
            f"pip install failed: {detail[-1] if detail else e.returncode}",
            modules=names,
            cause=e,
        ) from e
    except OSError as e:
        raise ModuleInstallError(
            f"Could not run pip: {e}", modules=names, cause=e
        ) from e


def ensure_sdk_modules(skip: bool = False, timeout: int = 300) -> List[str]:
    """
    Make sure every registered SDK distribution is importable.

    Args:
        skip: Do nothing (the operator manages the environment)
        timeout: Seconds allowed for the pip install

    Returns:
        Distributions that were installed by this call
    """
    if skip:
        logger.info("Skipping SDK module check")
        return []
    missing = missing_modules()
    if not missing:
        logger.debug("All SDK modules present")
        return []
    install_modules(missing, timeout=timeout)
    still_missing = [m.distribution for m in missing if not is_module_installed(m.distribution)]
    if still_missing:
        raise ModuleInstallError(
            "SDK modules still missing after install", modules=still_missing
        )
    return [m.distribution for m in missing]


# Pre-register the SDKs used by the Azure adapters
for _distribution in (
    "azure-identity",
    "azure-mgmt-resource",
    "azure-mgmt-msi",
    "azure-mgmt-authorization",
    "msgraph-sdk",
):
    register_module(SdkModule(distribution=_distribution))
