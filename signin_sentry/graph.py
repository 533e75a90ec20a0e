import logging
import time
from urllib.parse import quote

import msal
import requests

from .errors import AuthenticationFailure, RevocationFailure

logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
LOG_ANALYTICS_SCOPE = "https://api.loganalytics.io/.default"

BASE_WAIT_SECONDS = 5
MAX_WAIT_SECONDS = 120


def _backoff(retry_count):
    return min(BASE_WAIT_SECONDS * (2 ** retry_count), MAX_WAIT_SECONDS)


class ClientCredentialAuth:
    """App-only (client credentials) token for one resource scope

    Tokens are cached in memory and refreshed 5 minutes before they expire.
    """

    def __init__(self, config, scope=GRAPH_SCOPE, sleep=time.sleep):
        self.config = config
        self.scope = scope
        self.sleep = sleep
        self.auth_token = None
        self.token_expiry = 0
        self._app = None

    def _get_app(self):
        if self._app is None:
            self._app = msal.ConfidentialClientApplication(
                self.config.app_id,
                authority=f"https://login.microsoftonline.com/{self.config.tenant_id}",
                client_credential=self.config.client_secret,
            )
        return self._app

    def get_token(self, max_retries=3):
        """Get an access token for self.scope

        Args:
            max_retries: Maximum number of retries when throttled or the
                token endpoint cannot be reached

        Returns:
            Access token string

        Raises:
            AuthenticationFailure: credentials rejected or retries exhausted
        """
        current_time = time.time()
        if self.auth_token and current_time < self.token_expiry - 300:  # 5 min buffer
            return self.auth_token

        retry_count = 0
        while True:
            try:
                result = self._get_app().acquire_token_for_client(scopes=[self.scope])
            except ValueError as e:
                # msal raises ValueError for an unknown tenant/authority
                raise AuthenticationFailure(f"Authentication Error: {e}")
            except requests.RequestException as e:
                if retry_count >= max_retries:
                    raise AuthenticationFailure(f"Max retries exceeded during authentication: {e}")
                wait_time = _backoff(retry_count)
                logger.warning(
                    "Token acquisition error: %s. Retrying in %s seconds. (Attempt %s/%s)",
                    e, wait_time, retry_count + 1, max_retries,
                )
                self.sleep(wait_time)
                retry_count += 1
                continue

            if "access_token" in result:
                self.auth_token = result["access_token"]
                self.token_expiry = current_time + int(result.get("expires_in", 3600))
                return self.auth_token

            throttled = result.get("error") == "throttled" or "429" in (result.get("error_description") or "")
            if throttled and retry_count < max_retries:
                wait_time = _backoff(retry_count)
                logger.warning(
                    "Token acquisition throttled. Waiting %s seconds before retry. (Attempt %s/%s)",
                    wait_time, retry_count + 1, max_retries,
                )
                self.sleep(wait_time)
                retry_count += 1
                continue

            raise AuthenticationFailure(
                f"Authentication Error: {result.get('error')}: {result.get('error_description')}"
            )

    def headers(self):
        return {
            'Authorization': f'Bearer {self.get_token()}',
            'Content-Type': 'application/json',
        }


def throttle_aware_request(method, url, headers, timeout, max_retries=5, sleep=time.sleep, **kwargs):
    """Make an HTTP request, retrying on 429 and on connection errors

    Args:
        method: "GET" or "POST"
        url: Request URL
        headers: Request headers
        timeout: Seconds before a single attempt is abandoned
        max_retries: Maximum number of retries
        **kwargs: passed through to requests (json=, params=)

    Returns:
        Response object for the first non-429 answer

    Raises:
        requests.RequestException: retries exhausted
    """
    retry_count = 0
    while True:
        try:
            response = requests.request(method, url, headers=headers, timeout=timeout, **kwargs)
        except requests.RequestException as e:
            if retry_count >= max_retries:
                raise
            wait_time = _backoff(retry_count)
            logger.warning(
                "Request error: %s. Retrying in %s seconds. (Attempt %s/%s)",
                e, wait_time, retry_count + 1, max_retries,
            )
            sleep(wait_time)
            retry_count += 1
            continue

        if response.status_code != 429:
            return response

        if retry_count >= max_retries:
            raise requests.HTTPError(
                f"Request still throttled after {max_retries} retries: {url}", response=response
            )

        retry_after = response.headers.get('Retry-After')
        try:
            wait_time = min(int(retry_after), MAX_WAIT_SECONDS) if retry_after else _backoff(retry_count)
        except ValueError:
            wait_time = _backoff(retry_count)
        logger.warning(
            "Request throttled. Waiting %s seconds before retry. (Attempt %s/%s)",
            wait_time, retry_count + 1, max_retries,
        )
        sleep(wait_time)
        retry_count += 1


def revoke_sign_in_sessions(auth, principal, timeout=30, sleep=time.sleep):
    """Invalidate every refresh token / session cookie issued to principal

    Revoking twice is harmless, Graph simply answers success again.

    Raises:
        RevocationFailure: Graph returned an error or could not be reached
    """
    url = f"{GRAPH_BASE}/users/{quote(principal)}/revokeSignInSessions"
    try:
        response = throttle_aware_request("POST", url, auth.headers(), timeout, max_retries=3, sleep=sleep)
    except requests.RequestException as e:
        raise RevocationFailure(f"Revocation request for {principal} failed: {e}")

    if response.status_code in (200, 204):
        logger.info("Revoked sign-in sessions for %s", principal)
        return True

    raise RevocationFailure(
        f"Revocation for {principal} failed (status: {response.status_code}, text={response.text})"
    )
