"""Error taxonomy for custom domain handling.

Callers distinguish user-correctable input problems, routing misses,
retryable verification hiccups, exhausted verification budgets and
infrastructure failures. Infrastructure failures must never be treated
as "domain does not exist".
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all custom domain errors."""


class InvalidInputError(DomainError, ValueError):
    """Missing or malformed hostname supplied by a tenant."""


class DomainConflictError(InvalidInputError):
    """The domain is already claimed by another tenant."""

    def __init__(self, domain: str) -> None:
        super().__init__(f"Domain {domain} is already registered to another account")
        self.domain = domain


class DomainNotFoundError(DomainError, LookupError):
    """The domain is not registered (or not visible to the caller)."""

    def __init__(self, domain: str) -> None:
        super().__init__(f"Domain {domain} is not registered")
        self.domain = domain


class NotConfiguredError(DomainError):
    """A candidate domain has no active record."""


class TransientVerificationError(DomainError):
    """Network or DNS hiccup during verification. Retried without penalty."""


class TerminalVerificationError(DomainError):
    """The attempt budget for a domain was exhausted."""


class InfrastructureError(DomainError):
    """The record store or an internal lookup is unavailable."""


class StoreUnavailableError(InfrastructureError):
    """The domain record store could not be read or written."""


class IllegalTransitionError(DomainError):
    """A status change that the state machine does not define."""

    def __init__(self, status: object, event: object) -> None:
        super().__init__(f"No transition from {status} on {event}")
        self.status = status
        self.event = event
