import logging
from concurrent.futures import ThreadPoolExecutor

import requests

from .display import alert_subject, alert_summary, format_local_timestamp

logger = logging.getLogger(__name__)

TEAMS_TIMEOUT_SECONDS = 30


def build_teams_card(new, summary_text, tz_name="US/Eastern"):
    """Adaptive card payload for a Teams incoming webhook."""
    event = alert_subject(new)
    card_body = [
        {
            "type": "TextBlock",
            "text": "Suspicious Sign-in Alert",
            "weight": "bolder",
            "size": "medium"
        },
        {
            "type": "TextBlock",
            "text": summary_text,
            "wrap": True
        },
    ]
    if event is not None:
        card_body.append({
            "type": "FactSet",
            "facts": [
                {"title": "User", "value": event.principal},
                {"title": "Time", "value": format_local_timestamp(event.timestamp, tz_name)},
                {"title": "IP", "value": event.source_ip or "Unknown IP"},
                {"title": "CA Status", "value": event.conditional_access_status or "n/a"},
                {"title": "Code", "value": event.error_code or "n/a"},
                {"title": "Resource", "value": event.resource_name or "n/a"},
            ]
        })

    return {
        "text": summary_text,  # Fallback text
        "attachments": [
            {
                "contentType": "application/vnd.microsoft.card.adaptive",
                "content": {
                    "type": "AdaptiveCard",
                    "version": "1.0",
                    "body": card_body
                }
            }
        ]
    }


class AlertNotifier:
    """Raises one alert per cycle without holding up the poll loop

    The alert always goes to the log. With Teams enabled the card is posted
    from a background thread; the returned future can be waited on but the
    monitor never does.
    """

    def __init__(self, config):
        self.config = config
        self._executor = None
        if config.teams_notification and config.teams_webhook_url:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="teams-alert")

    def alert(self, new):
        if not new:
            return None
        summary_text = alert_summary(new, self.config.display_timezone)
        logger.warning("ALERT: %s", summary_text)

        if self._executor is None:
            return None
        payload = build_teams_card(new, summary_text, self.config.display_timezone)
        return self._executor.submit(self.send_teams_notification, payload)

    def send_teams_notification(self, payload):
        """POST the card to the webhook. Returns True on a 2xx answer."""
        try:
            response = requests.post(
                self.config.teams_webhook_url,
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=TEAMS_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error("Error sending Teams notification: %s", e)
            return False

        if response.status_code < 200 or response.status_code >= 300:
            logger.error("Error sending Teams notification: %s - %s", response.status_code, response.text)
            return False

        logger.info("Teams notification sent successfully")
        return True

    def shutdown(self, wait=False):
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
