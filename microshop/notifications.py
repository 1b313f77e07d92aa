"""
Account notices (email verification and password reset).

There is no mail transport in the demo: notices are written to the log with the
link the user would have received. Swap in another notifier with the same two
coroutines to deliver them for real.
"""
import logging
from typing import Optional

from microshop.config import PUBLIC_BASE_URL, VERIFICATION_TOKEN_HOURS, RESET_TOKEN_HOURS

logger = logging.getLogger(__name__)


class LogNotifier:
    """Writes verification and reset notices to the application log."""

    def __init__(self, base_url: str = PUBLIC_BASE_URL):
        self.base_url = base_url.rstrip("/")
        self.sent = []

    def verification_link(self, token: str) -> str:
        return f"{self.base_url}/?verify={token}"

    def reset_link(self, token: str) -> str:
        return f"{self.base_url}/?reset={token}"

    async def send_verification(self, email: str, first_name: Optional[str], token: str) -> None:
        link = self.verification_link(token)
        self._record(email, "Verify Your Email", link)
        logger.info(
            f"Verification notice for {email} ({first_name or 'User'}): {link} "
            f"(expires in {VERIFICATION_TOKEN_HOURS}h)"
        )

    async def send_password_reset(self, email: str, first_name: Optional[str], token: str) -> None:
        link = self.reset_link(token)
        self._record(email, "Reset Your Password", link)
        logger.info(
            f"Password reset notice for {email} ({first_name or 'User'}): {link} "
            f"(expires in {RESET_TOKEN_HOURS}h)"
        )

    def _record(self, email: str, subject: str, link: str) -> None:
        # Keep only the most recent notices
        self.sent.append({"to": email, "subject": subject, "link": link})
        del self.sent[:-50]


notifier = LogNotifier()
