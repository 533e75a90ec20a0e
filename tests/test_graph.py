import pytest
import requests

from signin_sentry.errors import AuthenticationFailure, RevocationFailure
from signin_sentry.graph import ClientCredentialAuth, revoke_sign_in_sessions

from conftest import FakeResponse


class FakeMsalApp:
    """Hands out scripted acquire_token_for_client results."""

    instances = []

    def __init__(self, client_id, authority=None, client_credential=None):
        self.client_id = client_id
        self.authority = authority
        self.client_credential = client_credential
        self.results = list(FakeMsalApp.next_results)
        self.calls = 0
        FakeMsalApp.instances.append(self)

    def acquire_token_for_client(self, scopes):
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def fake_msal(monkeypatch):
    FakeMsalApp.instances = []
    FakeMsalApp.next_results = []
    monkeypatch.setattr("signin_sentry.graph.msal.ConfidentialClientApplication", FakeMsalApp)
    return FakeMsalApp


class StaticAuth:
    def headers(self):
        return {"Authorization": "Bearer token"}


def test_token_is_acquired_and_cached(config, fake_msal):
    fake_msal.next_results = [{"access_token": "abc", "expires_in": 3600}]
    auth = ClientCredentialAuth(config, sleep=lambda s: None)

    assert auth.get_token() == "abc"
    assert auth.get_token() == "abc"

    app = fake_msal.instances[0]
    assert app.calls == 1
    assert app.client_id == "app-id"
    assert app.authority == "https://login.microsoftonline.com/tenant-id"
    assert auth.headers()["Authorization"] == "Bearer abc"


def test_throttled_token_request_is_retried(config, fake_msal):
    fake_msal.next_results = [
        {"error": "throttled", "error_description": "AADSTS50196"},
        {"access_token": "abc", "expires_in": 3600},
    ]
    sleeps = []
    auth = ClientCredentialAuth(config, sleep=sleeps.append)

    assert auth.get_token() == "abc"
    assert sleeps == [5]


def test_rejected_credentials_raise_authentication_failure(config, fake_msal):
    fake_msal.next_results = [{"error": "invalid_client", "error_description": "AADSTS7000215"}]
    auth = ClientCredentialAuth(config, sleep=lambda s: None)

    with pytest.raises(AuthenticationFailure, match="invalid_client"):
        auth.get_token()


def test_unreachable_token_endpoint_gives_up(config, fake_msal):
    fake_msal.next_results = [requests.ConnectionError("dns")] * 4
    auth = ClientCredentialAuth(config, sleep=lambda s: None)

    with pytest.raises(AuthenticationFailure, match="Max retries"):
        auth.get_token(max_retries=3)


def test_unknown_tenant_fails_without_retrying(config, fake_msal):
    fake_msal.next_results = [ValueError("Unable to get authority configuration")]
    sleeps = []
    auth = ClientCredentialAuth(config, sleep=sleeps.append)

    with pytest.raises(AuthenticationFailure, match="authority configuration"):
        auth.get_token(max_retries=3)

    assert sleeps == []
    assert fake_msal.instances[0].calls == 1


def test_revoke_posts_to_user(monkeypatch):
    calls = []

    def fake_request(method, url, headers=None, timeout=None, **kwargs):
        calls.append((method, url))
        return FakeResponse(200, {"value": True})

    monkeypatch.setattr("signin_sentry.graph.requests.request", fake_request)

    assert revoke_sign_in_sessions(StaticAuth(), "alice@contoso.com") is True
    assert calls == [("POST", "https://graph.microsoft.com/v1.0/users/alice%40contoso.com/revokeSignInSessions")]


def test_revoke_twice_is_harmless(monkeypatch):
    monkeypatch.setattr("signin_sentry.graph.requests.request", lambda *a, **k: FakeResponse(204))
    assert revoke_sign_in_sessions(StaticAuth(), "alice@contoso.com")
    assert revoke_sign_in_sessions(StaticAuth(), "alice@contoso.com")


def test_revoke_error_raises_revocation_failure(monkeypatch):
    monkeypatch.setattr(
        "signin_sentry.graph.requests.request",
        lambda *a, **k: FakeResponse(403, text="Authorization_RequestDenied"),
    )
    with pytest.raises(RevocationFailure, match="403"):
        revoke_sign_in_sessions(StaticAuth(), "alice@contoso.com")
