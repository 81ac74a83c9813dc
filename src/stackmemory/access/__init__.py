"""Access control: caller authentication, tier gates, usage ledger."""

from stackmemory.access.auth import CompositeAuthenticator, Credentials, Identity
from stackmemory.access.gate import UsageGate
from stackmemory.access.usage import UsageLedger

__all__ = [
    "CompositeAuthenticator",
    "Credentials",
    "Identity",
    "UsageGate",
    "UsageLedger",
]
