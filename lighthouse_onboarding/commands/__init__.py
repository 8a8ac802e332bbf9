"""Console entry points."""

from .authorizations import authorizations
from .provision import provision_command

__all__ = ["authorizations", "provision_command"]
