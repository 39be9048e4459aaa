"""Product catalog resolution across two paywall providers.

One provider is authoritative per session (selected by a feature flag).
For every named group the resolver takes the provider's scoped product ids,
falls back to the provider's global id set filtered through a known-good
allow-list, and otherwise reports the group as unavailable. If the primary
provider fails outright, the alternate provider's raw catalog is used.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Awaitable, Callable, Protocol

from fotobudka.errors import CatalogUnavailable
from fotobudka.models import CatalogEntry, Paywall

logger = logging.getLogger(__name__)

MAIN = "main"
TOKENS = "tokens"
AVATARS = "avatars"
GROUPS = (MAIN, TOKENS, AVATARS)
PLACEMENT_IDS = (MAIN, TOKENS, AVATARS, "mainRus")

DEFAULT_ALLOW_LISTS: dict[str, list[str]] = {
    MAIN: ["yearly_49.99_not_trial", "week_6.99_not_trial"],
    TOKENS: ["100_tokens", "250_tokens", "500_tokens", "1000_tokens"],
    AVATARS: ["1_avatar"],
}

_LEADING_UNITS = re.compile(r"^([0-9]+)")


class CatalogState(str, Enum):
    UNKNOWN = "unknown"
    READY = "ready"
    ERROR = "error"


def units_in_product(product_id: str) -> int:
    """Units granted by a consumable product id ("100_tokens" -> 100)."""
    match = _LEADING_UNITS.match(product_id)
    return int(match.group(1)) if match else 0


class CatalogProvider(Protocol):
    name: str

    async def fetch_paywalls(self, placement_ids: list[str]) -> list[Paywall]: ...


class StaticCatalogProvider:
    """Serves a fixed catalog (bundled fallback paywalls)."""

    def __init__(self, name: str, paywalls: list[Paywall]) -> None:
        self.name = name
        self.paywalls = paywalls

    @classmethod
    def from_mapping(cls, name: str, mapping: dict[str, list[str]]) -> StaticCatalogProvider:
        return cls(name, [Paywall(identifier=k, product_ids=list(v)) for k, v in mapping.items()])

    async def fetch_paywalls(self, placement_ids: list[str]) -> list[Paywall]:
        if not self.paywalls:
            raise CatalogUnavailable(f"{self.name}: no paywalls configured")
        return list(self.paywalls)


class PlacementCatalogProvider:
    """Fetches one paywall per placement through an SDK callable.

    Placements that fail are skipped; if none resolves the whole fetch fails.
    """

    def __init__(
        self,
        name: str,
        fetch_placement: Callable[[str], Awaitable[list[str]]],
    ) -> None:
        self.name = name
        self.fetch_placement = fetch_placement

    async def fetch_paywalls(self, placement_ids: list[str]) -> list[Paywall]:
        paywalls: list[Paywall] = []
        for placement_id in placement_ids:
            try:
                product_ids = await self.fetch_placement(placement_id)
            except Exception as exc:
                logger.warning("%s: placement %r failed: %s", self.name, placement_id, exc)
                continue
            paywalls.append(Paywall(identifier=placement_id, product_ids=list(product_ids)))

        if not paywalls:
            raise CatalogUnavailable(f"{self.name}: no paywalls resolved")
        return paywalls


class CatalogResolver:
    """Resolve the "main", "tokens" and "avatars" product groups."""

    def __init__(
        self,
        primary: CatalogProvider,
        alternate: CatalogProvider,
        use_alternate: bool = False,
        allow_lists: dict[str, list[str]] | None = None,
    ) -> None:
        self.primary = primary
        self.alternate = alternate
        self.use_alternate = use_alternate
        self.allow_lists = {
            group: [p.lower() for p in ids]
            for group, ids in (allow_lists or DEFAULT_ALLOW_LISTS).items()
        }
        self.entries: dict[str, CatalogEntry] = {}
        self.unavailable_groups: set[str] = set(GROUPS)
        self.provider_name: str | None = None
        self.state = CatalogState.UNKNOWN

    async def _fetch_raw(self) -> tuple[str, list[Paywall]]:
        placements = list(PLACEMENT_IDS)
        if self.use_alternate:
            return self.alternate.name, await self.alternate.fetch_paywalls(placements)

        try:
            return self.primary.name, await self.primary.fetch_paywalls(placements)
        except Exception as exc:
            logger.warning(
                "Primary catalog %s failed (%s); falling back to %s",
                self.primary.name, exc, self.alternate.name,
            )
        return self.alternate.name, await self.alternate.fetch_paywalls(placements)

    def resolve_group(self, group: str, paywalls: list[Paywall]) -> list[str]:
        """Product ids for ``group``: scoped ids, else global ∩ allow-list."""
        scoped: list[str] = []
        for paywall in paywalls:
            if paywall.identifier == group:
                scoped.extend(p.lower() for p in paywall.product_ids)
        if scoped:
            return _dedupe(scoped)

        allowed = set(self.allow_lists.get(group, []))
        global_ids = _dedupe(p.lower() for paywall in paywalls for p in paywall.product_ids)
        return [p for p in global_ids if p in allowed]

    async def fetch_catalog(self) -> list[CatalogEntry]:
        """Fetch and resolve the catalog; never raises.

        Returns:
            The resolved, non-empty groups in GROUPS order.
        """
        try:
            provider_name, paywalls = await self._fetch_raw()
        except Exception as exc:
            logger.error("Catalog unavailable from every provider: %s", exc)
            provider_name, paywalls = None, []

        self.provider_name = provider_name
        self.entries = {}
        self.unavailable_groups = set()
        for group in GROUPS:
            product_ids = self.resolve_group(group, paywalls)
            if product_ids:
                self.entries[group] = CatalogEntry(
                    identifier=group, product_ids=product_ids, provider=provider_name or "",
                )
                logger.info("Catalog %s: %s", group, ", ".join(product_ids))
            else:
                self.unavailable_groups.add(group)
                logger.warning("Catalog group %r unavailable", group)

        self.state = CatalogState.READY if MAIN in self.entries else CatalogState.ERROR
        return [self.entries[g] for g in GROUPS if g in self.entries]

    def entry(self, group: str) -> CatalogEntry | None:
        return self.entries.get(group)

    def group_for_product(self, product_id: str) -> str | None:
        key = product_id.lower()
        for group, entry in self.entries.items():
            if key in entry.product_ids:
                return group
        return None


def _dedupe(ids) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for product_id in ids:
        if product_id not in seen:
            seen.add(product_id)
            result.append(product_id)
    return result
