"""
Lighthouse Onboarding

Azure Lighthouse authorizations for managed customer subscriptions, and the
idempotent provisioning of the managed identity and application registration
used to ingest customer data into Microsoft Sentinel.
"""

__version__ = "0.3.0"
