"""Purchasable credit packs: minutes -> price in cents."""

ALLOWED_PACKS = {
    60: 1200,
    150: 2500,
    500: 7000,
}

PACK_LABELS = {minutes: f"{minutes} minutes" for minutes in ALLOWED_PACKS}


def get_pack(pack_minutes):
    """Return (price_cents, label) for a pack, or raise ValueError."""
    price_cents = ALLOWED_PACKS.get(pack_minutes)
    if price_cents is None:
        raise ValueError(f"Invalid credit pack: {pack_minutes}")
    return price_cents, PACK_LABELS[pack_minutes]
