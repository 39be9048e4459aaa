"""Cached token balance.

The server owns the balance. The ledger caches the last value read from
``GET /api/users/me`` and lets a verified purchase bump it optimistically
until the next ``load()`` confirms (or corrects) it.
"""

from __future__ import annotations

import logging

from fotobudka.auth import AuthSession
from fotobudka.catalog import TOKENS, CatalogResolver, units_in_product
from fotobudka.errors import FotobudkaError

logger = logging.getLogger(__name__)


class TokenLedger:
    def __init__(self, session: AuthSession) -> None:
        self.session = session
        self.balance = 0
        self.avatar_balance = 0
        self.pending_confirmation = False

    async def load(self) -> int:
        """Overwrite the cached balance with the server's. Never raises."""
        try:
            user = await self.session.fetch_current_user()
        except FotobudkaError as exc:
            logger.warning("Failed to load tokens: %s", exc)
            return self.balance

        if self.pending_confirmation and user.tokens != self.balance:
            logger.info("Balance corrected by server: %d -> %d", self.balance, user.tokens)
        self.balance = user.tokens
        self.avatar_balance = user.avatar_tokens
        self.pending_confirmation = False
        return self.balance

    def apply_optimistic_delta(self, delta: int) -> int:
        """Add ``delta`` ahead of server confirmation."""
        self.balance += delta
        self.pending_confirmation = True
        logger.info("Optimistic balance update %+d -> %d", delta, self.balance)
        return self.balance

    def apply_purchase(self, product_id: str, catalog: CatalogResolver) -> int:
        """Credit a verified purchase of a token pack.

        Products outside the "tokens" group, or whose id carries no unit
        count, leave the balance unchanged.
        """
        if catalog.group_for_product(product_id) != TOKENS:
            return self.balance
        units = units_in_product(product_id)
        if units <= 0:
            logger.warning("Could not extract token count from product id %r", product_id)
            return self.balance
        return self.apply_optimistic_delta(units)
