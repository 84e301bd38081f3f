"""Repository for installed shop sessions."""

from typing import Optional

from boxoffice.core.errors import PermanentError


class ShopSessionRepository:
    """Lookup of Admin API access tokens stored at install time."""

    def __init__(self, pool):
        self.pool = pool

    async def get_access_token(self, shop: str) -> str:
        """Access token for an installed shop.

        Raises:
            PermanentError: shop unknown or uninstalled
        """
        async with self.pool.acquire() as conn:
            token: Optional[str] = await conn.fetchval(
                """
                SELECT access_token FROM shopify_sessions
                WHERE shop = $1 AND is_uninstalled = false
                LIMIT 1
                """,
                shop,
            )
        if not token:
            raise PermanentError(f"No access token for shop: {shop}", service="shopify")
        return token
