import logging

import requests
from airflow.models import Variable

log = logging.getLogger(__name__)

DISCORD_LIMIT = 2000


def _truncate_for_discord(text: str, limit: int = DISCORD_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 20] + "\n… (truncated)"


def format_sync_failure(what: str, local_conn_id: str, online_conn_id: str, error: BaseException) -> str:
    return (
        f"❗️ **Local/Online sync failed**: {what}\n"
        f"- Databases: `{local_conn_id}` ↔ `{online_conn_id}`\n"
        f"- Error: {type(error).__name__}: {error}"
    )


def send_discord_alert(message: str, username: str = "Local/Online Sync Alert") -> bool:
    """
    Post a message to the Discord webhook in Airflow Variable 'DISCORD_WEBHOOK'.
    Returns True when Discord accepted it. Delivery problems are logged, not raised.
    """
    webhook_url: str = Variable.get("DISCORD_WEBHOOK", default_var="")
    if not webhook_url:
        log.warning("No Discord webhook URL configured (Variable 'DISCORD_WEBHOOK'), skipping alert.")
        return False

    payload = {"content": _truncate_for_discord(message), "username": username}

    try:
        response = requests.post(webhook_url, json=payload, timeout=10)
    except requests.RequestException as e:
        log.exception("Exception while sending Discord alert: %s", e)
        return False

    if response.status_code in (200, 204):
        log.info("Discord alert sent successfully (status %s).", response.status_code)
        return True
    log.error("Failed to send Discord alert: status=%s body=%s", response.status_code, response.text)
    return False
