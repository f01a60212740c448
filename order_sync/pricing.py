from __future__ import annotations

from typing import Iterable, List

from .modifiers import ModifierResolution, ResolvedLine, resolve_items, resolver_for
from .schemas import LineItem

DEFAULT_CURRENCY_SYMBOL = "R"


def line_total(item: LineItem) -> int:
    """(unit price + per-unit modifier increment) x quantity, in minor units."""
    resolution = resolver_for(item).modifiers(item)
    return (item.unit_price_cents + resolution.unit_increment) * item.quantity


def resolved_line_total(line: ResolvedLine) -> int:
    """A main's own total plus the legacy extras attached to it."""
    return line_total(line.item) + sum(line_total(extra) for extra in line.attached)


def order_total(items: Iterable[LineItem]) -> int:
    # Attached extras are counted through their parent, unmatched extras on their own.
    return sum(resolved_line_total(line) for line in resolve_items(items))


def format_money(cents: int, symbol: str = DEFAULT_CURRENCY_SYMBOL) -> str:
    sign = "-" if cents < 0 else ""
    whole, fraction = divmod(abs(int(cents)), 100)
    return f"{sign}{symbol}{whole}.{fraction:02d}"


def describe_modifiers(
    resolution: ModifierResolution, symbol: str = DEFAULT_CURRENCY_SYMBOL
) -> List[str]:
    """Render lines such as ``Add-ons: Bacon (+R15.00), Egg``."""
    lines: List[str] = []
    for group in resolution.groups:
        parts = []
        for option in group.options:
            label = option.name.strip() or "Selected"
            if option.price_cents > 0:
                label = f"{label} (+{format_money(option.price_cents, symbol)})"
            parts.append(label)
        lines.append(f"{group.name}: {', '.join(parts)}")
    return lines
