"""Security alert emails. Best effort: a failed send is logged, never raised."""

import logging

from clients.email_client import EmailGatewayClient, EmailGatewayError
from auth.types import DeviceInfo, User

logger = logging.getLogger(__name__)


class SecurityAlerts:
    """Compose and send account security notifications."""

    def __init__(self, email_client: EmailGatewayClient | None, app_name: str):
        self._email = email_client
        self._app_name = app_name

    def _send(self, to: str, subject: str, body: str) -> bool:
        if self._email is None:
            logger.info(f"Email disabled; dropped alert '{subject}' for {to}")
            return False
        try:
            self._email.send_security_alert(to, subject, body)
            return True
        except EmailGatewayError as e:
            logger.error(f"Security alert to {to} failed: {e}")
            return False

    def new_device(self, user: User, device: DeviceInfo) -> bool:
        body = (
            f"A new device just signed in to your {self._app_name} account.\n\n"
            f"Device: {device.display_name}\n"
            f"IP address: {device.ip_address or 'unknown'}\n\n"
            "If this wasn't you, sign out of all other sessions from your "
            "security settings."
        )
        return self._send(user.email, f"New sign-in to {self._app_name}", body)

    def failed_logins(self, user: User, attempts: int, window_minutes: int) -> bool:
        body = (
            f"We saw {attempts} failed sign-in attempts on your {self._app_name} "
            f"account in the last {window_minutes} minutes.\n\n"
            "If this wasn't you, no action is needed, but keep an eye on your "
            "active sessions."
        )
        return self._send(user.email, f"Failed sign-in attempts on {self._app_name}", body)
