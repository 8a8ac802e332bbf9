"""
Utility modules for Lighthouse Onboarding.
"""

from .module_installer import ensure_sdk_modules, is_module_installed

__all__ = [
    "ensure_sdk_modules",
    "is_module_installed",
]


def mask_identifier(value: str, visible: int = 8) -> str:
    """
    Shorten a tenant or subscription id for INFO-level output.
    Example: 11111111-1111-1111-1111-111111111111 -> 11111111...
    """
    if not value:
        return ""
    if len(value) <= visible:
        return value
    return value[:visible] + "..."
