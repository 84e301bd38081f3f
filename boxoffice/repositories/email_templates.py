"""Repository for per-shop email templates."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class EmailTemplate:
    tenant: str
    template_key: str
    subject: str
    html: str
    title: Optional[str] = None


class EmailTemplateRepository:
    """Read access to email_templates."""

    def __init__(self, pool):
        self.pool = pool

    async def get(self, tenant: str, template_key: str) -> Optional[EmailTemplate]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT tenant, template_key, title, subject, html
                FROM email_templates
                WHERE tenant = $1 AND template_key = $2
                LIMIT 1
                """,
                tenant,
                template_key,
            )
        if not row:
            return None
        return EmailTemplate(
            tenant=row["tenant"],
            template_key=row["template_key"],
            subject=row["subject"] or "",
            html=row["html"] or "",
            title=row["title"],
        )
