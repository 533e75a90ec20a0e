import os
from dataclasses import dataclass
from typing import Optional

import pytz
from dotenv import load_dotenv, find_dotenv

from .errors import ConfigError

# Bundled worker, used when TRIAGE_WORKER_PATH is blank
DEFAULT_WORKER_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "triage_worker.py")

QUERY_VARIANTS = ("failures", "success")
TRIAGE_POLICIES = ("prompt", "decline", "approve")


@dataclass
class MonitorConfig:
    # Azure credentials
    app_id: str = ""
    tenant_id: str = ""
    client_secret: str = ""
    workspace_id: str = ""

    # Polling
    interval_seconds: int = 300
    lookback_hours: int = 24
    signature_ttl_hours: int = 48
    fetch_timeout_seconds: int = 60
    fetch_max_retries: int = 3

    # Query predicate
    client_marker: str = "python-requests"
    target_resource: str = "Microsoft Graph"
    query_variant: str = "failures"

    # Triage
    worker_path: str = DEFAULT_WORKER_PATH
    max_concurrent_triage: int = 4
    triage_policy: str = "prompt"
    display_timezone: str = "US/Eastern"

    # Notifications / output
    teams_notification: bool = False
    teams_webhook_url: str = ""
    write_cycle_reports: bool = True
    report_dir: str = "Polling Reports"
    log_dir: str = "logs"

    @property
    def signature_ttl_seconds(self) -> Optional[int]:
        if self.signature_ttl_hours <= 0:
            return None
        return self.signature_ttl_hours * 3600

    def validate(self, require_workspace=True):
        """Raise ConfigError for anything the monitor cannot start with."""
        missing = [name for name, value in (
            ("AZURE_CLIENT_ID", self.app_id),
            ("AZURE_TENANT_ID", self.tenant_id),
            ("AZURE_CLIENT_SECRET", self.client_secret),
        ) if not value]
        if require_workspace and not self.workspace_id:
            missing.append("LOG_ANALYTICS_WORKSPACE_ID")
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

        if self.interval_seconds <= 0:
            raise ConfigError("POLL_INTERVAL_SECONDS must be greater than 0")
        if self.lookback_hours <= 0:
            raise ConfigError("LOOKBACK_HOURS must be greater than 0")
        # A signature may only be forgotten once its event can no longer be fetched
        if self.signature_ttl_hours > 0 and self.signature_ttl_hours < self.lookback_hours:
            raise ConfigError(
                f"SIGNATURE_TTL_HOURS ({self.signature_ttl_hours}) must be at least "
                f"LOOKBACK_HOURS ({self.lookback_hours}), or 0 to disable eviction"
            )
        if self.fetch_timeout_seconds <= 0:
            raise ConfigError("FETCH_TIMEOUT_SECONDS must be greater than 0")
        if self.max_concurrent_triage <= 0:
            raise ConfigError("MAX_CONCURRENT_TRIAGE must be greater than 0")
        if self.query_variant not in QUERY_VARIANTS:
            raise ConfigError(f"QUERY_VARIANT must be one of {', '.join(QUERY_VARIANTS)}")
        if self.triage_policy not in TRIAGE_POLICIES:
            raise ConfigError(f"TRIAGE_POLICY must be one of {', '.join(TRIAGE_POLICIES)}")
        if self.display_timezone not in pytz.all_timezones_set:
            raise ConfigError(f"Unknown DISPLAY_TIMEZONE: {self.display_timezone}")
        if self.teams_notification and not self.teams_webhook_url:
            raise ConfigError("TEAMS_NOTIFICATION is on but TEAMS_WEBHOOK_URL is empty")
        return self


def _int_setting(name, default):
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _bool_setting(name, default):
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    return raw.strip().lower() == "true"


def load_config(config_path="config.env"):
    """Load settings from a config.env file and the process environment

    Values already present in the environment win over the file.

    Args:
        config_path: Path to the config.env file; searched upward from the
            current directory when relative

    Returns:
        MonitorConfig (not yet validated)
    """
    dotenv_path = find_dotenv(filename=config_path, usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path)

    return MonitorConfig(
        # Azure credentials
        app_id=os.getenv("AZURE_CLIENT_ID", ""),
        tenant_id=os.getenv("AZURE_TENANT_ID", ""),
        client_secret=os.getenv("AZURE_CLIENT_SECRET", ""),
        workspace_id=os.getenv("LOG_ANALYTICS_WORKSPACE_ID", ""),

        # Polling
        interval_seconds=_int_setting("POLL_INTERVAL_SECONDS", 300),
        lookback_hours=_int_setting("LOOKBACK_HOURS", 24),
        signature_ttl_hours=_int_setting("SIGNATURE_TTL_HOURS", 48),
        fetch_timeout_seconds=_int_setting("FETCH_TIMEOUT_SECONDS", 60),
        fetch_max_retries=_int_setting("FETCH_MAX_RETRIES", 3),

        # Query predicate
        client_marker=os.getenv("CLIENT_MARKER") or "python-requests",
        target_resource=os.getenv("TARGET_RESOURCE") or "Microsoft Graph",
        query_variant=(os.getenv("QUERY_VARIANT") or "failures").strip().lower(),

        # Triage
        worker_path=os.getenv("TRIAGE_WORKER_PATH") or DEFAULT_WORKER_PATH,
        max_concurrent_triage=_int_setting("MAX_CONCURRENT_TRIAGE", 4),
        triage_policy=(os.getenv("TRIAGE_POLICY") or "prompt").strip().lower(),
        display_timezone=os.getenv("DISPLAY_TIMEZONE") or "US/Eastern",

        # Notifications / output
        teams_notification=_bool_setting("TEAMS_NOTIFICATION", False),
        teams_webhook_url=os.getenv("TEAMS_WEBHOOK_URL", ""),
        write_cycle_reports=_bool_setting("WRITE_CYCLE_REPORTS", True),
        report_dir=os.getenv("REPORT_DIR") or "Polling Reports",
        log_dir=os.getenv("LOG_DIR") or "logs",
    )
