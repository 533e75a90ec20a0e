import datetime
import logging
import re
import time

import pytz
import requests

from .errors import FetchFailure
from .graph import ClientCredentialAuth, LOG_ANALYTICS_SCOPE, throttle_aware_request
from .models import Event

logger = logging.getLogger(__name__)

LOG_ANALYTICS_QUERY_URL = "https://api.loganalytics.io/v1/workspaces/{workspace_id}/query"

# Wrong-password result code, not interesting on its own
BAD_CREDENTIAL_CODE = "50126"

OUTCOME_CONDITIONS = {
    "failures": f'ConditionalAccessStatus != "success" and ResultType != "{BAD_CREDENTIAL_CODE}"',
    "success": 'ConditionalAccessStatus == "success" and ResultType == "0"',
}

COLUMN_MAP = {
    "TimeGenerated": "timestamp",
    "UserPrincipalName": "principal",
    "IPAddress": "source_ip",
    "ConditionalAccessStatus": "conditional_access_status",
    "ResultType": "error_code",
    "ResourceDisplayName": "resource_name",
}

_FRACTION_RE = re.compile(r"\.(\d+)")


def _six_digit_fraction(match):
    # fromisoformat wants exactly 3 or 6 fractional digits before 3.11
    return "." + (match.group(1) + "000000")[:6]


def _kql_string(value):
    return '"' + value.replace('\\', '\\\\').replace('"', '\\"') + '"'


def build_query(config):
    """KQL for the one sign-in pattern this monitor watches for.

    Results come back oldest first, so the last row for a user is the most
    recent one.
    """
    return "\n".join([
        "SigninLogs",
        f"| where TimeGenerated > ago({config.lookback_hours}h)",
        f"| where UserAgent contains {_kql_string(config.client_marker)}",
        f"| where ResourceDisplayName == {_kql_string(config.target_resource)}",
        f"| where {OUTCOME_CONDITIONS[config.query_variant]}",
        "| project TimeGenerated, UserPrincipalName, IPAddress, ConditionalAccessStatus, "
        "ResultType, ResourceDisplayName",
        "| order by TimeGenerated asc",
    ])


def parse_timestamp(value):
    """Parse a Kusto datetime ("2024-05-01T09:00:00.1234567Z") into UTC."""
    if isinstance(value, datetime.datetime):
        parsed = value
    else:
        text = _FRACTION_RE.sub(_six_digit_fraction, str(value).strip()).replace('Z', '+00:00')
        parsed = datetime.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return pytz.utc.localize(parsed)
    return parsed.astimezone(pytz.utc)


def parse_query_response(data):
    """Turn a Log Analytics query response body into Events, oldest first

    Raises:
        FetchFailure: the body is not a query result table
    """
    try:
        table = data["tables"][0]
        columns = [column["name"] for column in table["columns"]]
        rows = table["rows"]
    except (KeyError, IndexError, TypeError) as e:
        raise FetchFailure(f"Unexpected query response structure: {e}")

    events = []
    for row in rows:
        record = {}
        for name, value in zip(columns, row):
            field = COLUMN_MAP.get(name)
            if field:
                record[field] = value

        if not record.get("principal") or not record.get("timestamp"):
            logger.warning("Skipping sign-in row without user or time: %s", row)
            continue

        try:
            timestamp = parse_timestamp(record["timestamp"])
        except ValueError:
            logger.warning("Skipping sign-in row with unreadable time: %s", record["timestamp"])
            continue

        error_code = record.get("error_code")
        events.append(Event(
            timestamp=timestamp,
            principal=record["principal"],
            source_ip=record.get("source_ip") or "",
            conditional_access_status=record.get("conditional_access_status") or "",
            error_code=str(error_code) if error_code not in (None, "") else None,
            resource_name=record.get("resource_name") or "",
        ))

    # sorted() is stable, rows sharing a timestamp keep their query order
    return sorted(events, key=lambda event: event.timestamp)


class LogAnalyticsClient:
    """Runs the sign-in query against a Log Analytics workspace."""

    def __init__(self, config, auth=None, sleep=time.sleep):
        self.config = config
        self.auth = auth or ClientCredentialAuth(config, scope=LOG_ANALYTICS_SCOPE, sleep=sleep)
        self.sleep = sleep
        self.query = build_query(config)

    def fetch_events(self):
        """Fetch matching sign-ins inside the lookback window

        Returns:
            List of Event, ascending by timestamp

        Raises:
            FetchFailure: request failed, timed out, or returned an error
        """
        url = LOG_ANALYTICS_QUERY_URL.format(workspace_id=self.config.workspace_id)
        body = {
            "query": self.query,
            "timespan": f"PT{self.config.lookback_hours}H",
        }
        logger.info("Querying sign-ins for the last %s hours", self.config.lookback_hours)

        try:
            response = throttle_aware_request(
                "POST", url, self.auth.headers(),
                timeout=self.config.fetch_timeout_seconds,
                max_retries=self.config.fetch_max_retries,
                sleep=self.sleep,
                json=body,
            )
        except requests.RequestException as e:
            raise FetchFailure(f"Sign-in query failed: {e}")

        if response.status_code != 200:
            raise FetchFailure(
                f"Sign-in query failed (status: {response.status_code}, text={response.text})"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise FetchFailure(f"Sign-in query returned invalid JSON: {e}")

        events = parse_query_response(data)
        logger.info("Total sign-ins fetched: %s", len(events))
        return events
