"""Exceptions raised by the monitor and the triage worker."""


class SentryError(Exception):
    """Base class for every error this package raises on purpose."""


class ConfigError(SentryError):
    """config.env / environment is missing a value or holds a bad one."""


class AuthenticationFailure(SentryError):
    """No access token could be acquired for the tenant."""


class FetchFailure(SentryError):
    """The sign-in query could not be completed for this cycle."""


class MissingWorkerProgram(SentryError):
    """The configured triage worker program does not exist."""


class SpawnFailure(SentryError):
    """A triage worker process could not be started."""

    def __init__(self, principal, reason):
        super().__init__(f"Could not start triage worker for {principal}: {reason}")
        self.principal = principal
        self.reason = reason


class RevocationFailure(SentryError):
    """Graph refused or failed the revokeSignInSessions call."""
