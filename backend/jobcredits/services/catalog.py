"""Static catalog of what employers can buy.

Packs and add-ons are versioned here in code. Gateway price identifiers are
kept out of the definitions and resolved through ``gateway_price_id`` so the
ledger never depends on gateway naming.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from jobcredits.core.errors import GatewayNotConfigured, InvalidSelection
from jobcredits.core.settings import settings
from jobcredits.models.credit_unit import CreditType


DEFAULT_EXPIRATION_DAYS = 30


@dataclass(frozen=True)
class CreditPack:
    key: str
    name: str
    kind: str  # "tier" or "credit_pack"
    job_post_credits: int
    price_cents: int
    featured_post_credits: int = 0
    social_graphic_credits: int = 0
    expiration_days: int = DEFAULT_EXPIRATION_DAYS
    requires_subscription: bool = False
    active: bool = True

    def credit_counts(self) -> dict[CreditType, int]:
        return {
            CreditType.JOB_POST: self.job_post_credits,
            CreditType.FEATURED_POST: self.featured_post_credits,
            CreditType.SOCIAL_GRAPHIC: self.social_graphic_credits,
        }


@dataclass(frozen=True)
class AddOnEffect:
    featured: bool = False
    placement_bump: bool = False
    social_push: bool = False
    pinned: bool = False


@dataclass(frozen=True)
class AddOnDefinition:
    key: str
    slug: str
    name: str
    category: str
    price_cents: int
    effect: AddOnEffect
    expiration_days: int = 365
    # When bought together with a pack the add-on becomes credits instead of a grant.
    grants_featured_credit: bool = False
    grants_social_credit: bool = False
    active: bool = True


@dataclass(frozen=True)
class UpsellOption:
    key: str
    name: str
    price_cents: int


CREDIT_PACKS: dict[str, CreditPack] = {
    "starter": CreditPack(key="starter", name="Starter", kind="tier", job_post_credits=2, price_cents=8900),
    "standard": CreditPack(key="standard", name="Standard", kind="tier", job_post_credits=5, price_cents=19900),
    "pro": CreditPack(
        key="pro",
        name="Pro",
        kind="tier",
        job_post_credits=10,
        featured_post_credits=2,
        price_cents=35000,
    ),
    "single_credit": CreditPack(
        key="single_credit",
        name="1 Job Credit",
        kind="credit_pack",
        job_post_credits=1,
        price_cents=5900,
        requires_subscription=True,
    ),
    "five_credits": CreditPack(
        key="five_credits",
        name="5 Job Credits",
        kind="credit_pack",
        job_post_credits=5,
        price_cents=24900,
        requires_subscription=True,
    ),
}

ADD_ONS: dict[str, AddOnDefinition] = {
    "featured_post": AddOnDefinition(
        key="featured_post",
        slug="featured-post",
        name="Featured Post",
        category="promotion",
        price_cents=2900,
        effect=AddOnEffect(featured=True, placement_bump=True),
        grants_featured_credit=True,
    ),
    "social_graphic": AddOnDefinition(
        key="social_graphic",
        slug="social-graphic",
        name="Social Media Graphic",
        category="promotion",
        price_cents=2900,
        effect=AddOnEffect(social_push=True),
        grants_social_credit=True,
    ),
    "feature_and_social_bundle": AddOnDefinition(
        key="feature_and_social_bundle",
        slug="feature-and-social-bundle",
        name="Feature + Social Bundle",
        category="bundle",
        price_cents=5000,
        effect=AddOnEffect(featured=True, placement_bump=True, social_push=True),
        grants_featured_credit=True,
        grants_social_credit=True,
    ),
}

UPSELL_OPTIONS: dict[str, UpsellOption] = {
    "social_media_shoutout": UpsellOption(key="social_media_shoutout", name="Social Media Shoutout", price_cents=2900),
    "placement_bump": UpsellOption(key="placement_bump", name="On-Site Placement Bump", price_cents=2900),
    "upsell_bundle": UpsellOption(key="upsell_bundle", name="Complete Promotion Bundle", price_cents=5000),
}


def _normalize_key(key: str | None) -> str:
    return str(key or "").strip().lower().replace("-", "_")


def get_pack(pack_key: str | None) -> CreditPack:
    pack = CREDIT_PACKS.get(_normalize_key(pack_key))
    if pack is None or not pack.active:
        raise InvalidSelection(f"Unknown or inactive credit pack: {pack_key}")
    return pack


def get_add_on(add_on_key: str | None) -> AddOnDefinition:
    key = _normalize_key(add_on_key)
    add_on = ADD_ONS.get(key)
    if add_on is None:
        add_on = next((a for a in ADD_ONS.values() if a.slug == str(add_on_key or "").strip().lower()), None)
    if add_on is None or not add_on.active:
        raise InvalidSelection(f"Unknown or inactive add-on: {add_on_key}")
    return add_on


def list_packs() -> list[CreditPack]:
    return [p for p in CREDIT_PACKS.values() if p.active]


def list_add_ons() -> list[AddOnDefinition]:
    return [a for a in ADD_ONS.values() if a.active]


def resolve_upsell_selection(
    *, social_media_shoutout: bool, placement_bump: bool, upsell_bundle: bool
) -> tuple[dict[str, bool], list[str]]:
    """Normalise an upsell selection into job flags and the line items to charge.

    The bundle implies both individual upsells and replaces their line items.
    """
    if upsell_bundle:
        flags = {"social_media_shoutout": True, "placement_bump": True, "upsell_bundle": True}
        return flags, ["upsell_bundle"]
    flags = {
        "social_media_shoutout": bool(social_media_shoutout),
        "placement_bump": bool(placement_bump),
        "upsell_bundle": False,
    }
    items = [k for k in ("social_media_shoutout", "placement_bump") if flags[k]]
    if not items:
        raise InvalidSelection("Select at least one upsell")
    return flags, items


def upsell_total_cents(item_keys: list[str]) -> int:
    return sum(UPSELL_OPTIONS[k].price_cents for k in item_keys)


def gateway_price_id(item_key: str) -> str:
    price_id = (settings.stripe_price_ids or {}).get(item_key)
    if not price_id:
        raise GatewayNotConfigured(f"Stripe price not configured for: {item_key}")
    return price_id


def catalog_snapshot() -> dict[str, Any]:
    return {
        "packs": [asdict(p) for p in list_packs()],
        "add_ons": [asdict(a) for a in list_add_ons()],
        "upsells": [asdict(u) for u in UPSELL_OPTIONS.values()],
    }
