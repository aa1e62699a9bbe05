"""Exception hierarchy shared by the dnsfik modules."""

from __future__ import annotations


class DnsfikError(Exception):
    """Base class for all dnsfik errors."""


class ConfigurationError(DnsfikError):
    """Raised when a setting cannot be parsed or is out of range."""


class LabelValidationError(DnsfikError):
    """A single DNS label group is malformed.

    Only raised inside the label parser, which logs and drops the group.
    """


class ResolutionError(DnsfikError):
    """The public address for a record type could not be determined."""


class IPv6UnavailableError(ResolutionError):
    """No IPv6 connectivity from this host (usually a Docker daemon without IPv6)."""


class AddressDisagreementError(ResolutionError):
    """Independent IPv4 sources returned different addresses."""

    def __init__(self, answers: dict[str, str]):
        self.answers = answers
        detail = ", ".join(f"{url}={ip}" for url, ip in answers.items())
        super().__init__(f"IP addresses from different sources don't match ({detail})")


class DNSProviderError(DnsfikError):
    """A call to the DNS provider failed (transport, HTTP status, or API error)."""


class DNSProviderAuthError(DNSProviderError):
    """The DNS provider rejected the credentials (HTTP 401/403)."""
