"""Template mailer.

Templates live per shop in email_templates and carry ``{{name}}``
placeholders. Rendered messages are handed to an HTTP mail relay.
"""

import re
from typing import Any, Optional

import httpx
import structlog

from boxoffice.core.errors import PermanentError
from boxoffice.repositories.email_templates import EmailTemplateRepository
from boxoffice.services.http import send_request

logger = structlog.get_logger(__name__)

SERVICE = "mail_relay"

NORTHERN_TEMPLATE = "northern_subscription"
SOUTHERN_TEMPLATE = "southern_subscription"
WORKSHOP_TEMPLATE = "workshop_email"
WORKSHOP_NOTIFICATION_TEMPLATE = "workshop_notification"

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render(text: Optional[str], variables: dict[str, Any]) -> str:
    """Substitute {{name}} placeholders; unknown names are left in place."""
    if not text:
        return ""

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        value = variables[name]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, text)


class TemplateMailer:
    """Renders a stored template and delivers it through the relay."""

    def __init__(
        self,
        templates: EmailTemplateRepository,
        relay_url: Optional[str],
        relay_token: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.templates = templates
        self.relay_url = relay_url
        self.relay_token = relay_token
        self.sender = sender
        self.timeout = timeout
        self._client = client

    async def send(
        self,
        tenant: str,
        template_key: str,
        to_address: str,
        variables: Optional[dict[str, Any]] = None,
    ) -> Optional[str]:
        """Send one templated message. Returns the relay's message id.

        Raises:
            PermanentError: template missing or relay not configured
            RateLimitedError / TransientError: relay refused or unreachable
        """
        template = await self.templates.get(tenant, template_key)
        if template is None:
            logger.error("email_template_not_found", tenant=tenant, template_key=template_key)
            raise PermanentError(f"Email template not found: {template_key}", service=SERVICE)

        if not self.relay_url:
            raise PermanentError("Mail relay not configured", service=SERVICE)

        variables = variables or {}
        message = {
            "from": self.sender,
            "to": to_address,
            "subject": render(template.subject, variables),
            "html": render(template.html, variables),
        }
        headers = {}
        if self.relay_token:
            headers["Authorization"] = f"Bearer {self.relay_token}"

        resp = await send_request(
            "POST",
            self.relay_url,
            service=SERVICE,
            timeout=self.timeout,
            client=self._client,
            headers=headers,
            json=message,
        )
        data = resp.json() if resp.content else {}
        message_id = data.get("message_id") or data.get("id")
        logger.info(
            "email_sent",
            tenant=tenant,
            template_key=template_key,
            message_id=message_id,
        )
        return message_id
