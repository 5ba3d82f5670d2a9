"""Exception hierarchy for pyclat."""


class ClatError(Exception):
    """Base class for all pyclat errors."""


class ConfigError(ClatError):
    """Invalid or inconsistent configuration."""


class InvalidAddress(ClatError, ValueError):
    """Malformed IPv4/IPv6 address text."""


class InvalidPrefix(InvalidAddress):
    """IPv6 prefix that is malformed or not a legal RFC 6052 length."""


class NoCandidateAddress(ClatError):
    """No local IPv6 address is usable as a source for the CLAT address."""


class ProvisioningError(ClatError):
    """A forward provisioning step failed."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step


class LedgerStateError(ClatError, RuntimeError):
    """The provisioning ledger was used outside its valid states."""
