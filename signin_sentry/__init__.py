"""Sign-in Sentry: polls Azure AD sign-in logs for a suspicious pattern,
alerts on sign-ins it has not seen before and hands each affected user to a
triage worker that can revoke their sessions."""

__version__ = "1.0.0"
