from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from .schemas import ExtrasPayload, LineItem, ModifierGroup, ModifierOption, PayloadGroup, SelectedOption

ModifierSelection = Mapping[str, Sequence[str]]

EXTRA_FOR_PREFIX = "EXTRA FOR:"

_COOKING_MARKERS = ("cook", "done")
_DEFAULT_MAX_SELECT = 3
_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class SelectionRule:
    minimum: int
    maximum: int

    def admits(self, count: int) -> bool:
        return self.minimum <= count <= self.maximum


@dataclass(frozen=True)
class SelectionIssue:
    group_id: str
    group_name: str
    minimum: int
    maximum: int
    message: str


class ModifierValidationError(ValueError):
    """Raised when a modifier selection breaks a group's selection rule."""

    def __init__(self, issues: Sequence[SelectionIssue]):
        self.issues = list(issues)
        super().__init__(" ".join(issue.message for issue in self.issues))


def is_cooking_group(group_name: str) -> bool:
    name = group_name.strip().lower()
    return any(marker in name for marker in _COOKING_MARKERS)


def rule_for(group: ModifierGroup) -> SelectionRule:
    """Resolve a group's bounds, defaulting each missing bound independently."""
    cooking = is_cooking_group(group.group_name)

    if group.min_select is not None:
        minimum = group.min_select
    elif group.is_required is not None:
        minimum = 1 if group.is_required else 0
    else:
        minimum = 1 if cooking else 0

    if group.max_select is not None:
        maximum = group.max_select
    else:
        maximum = 1 if cooking else _DEFAULT_MAX_SELECT

    return SelectionRule(minimum=min(minimum, maximum), maximum=maximum)


def selected_options(group: ModifierGroup, selection: ModifierSelection) -> List[ModifierOption]:
    """Known options chosen for ``group`` in selection order, duplicates dropped."""
    by_id = {option.id: option for option in group.items}
    chosen: List[ModifierOption] = []
    seen: set[str] = set()
    for option_id in selection.get(group.group_id, ()):
        option = by_id.get(option_id)
        if option is None or option_id in seen:
            continue
        seen.add(option_id)
        chosen.append(option)
    return chosen


def _issue_message(name: str, rule: SelectionRule, count: int) -> str:
    if rule.minimum == rule.maximum:
        noun = "option" if rule.minimum == 1 else "options"
        return f'Select exactly {rule.minimum} {noun} for "{name}".'
    if count < rule.minimum:
        noun = "option" if rule.minimum == 1 else "options"
        return f'Select at least {rule.minimum} {noun} for "{name}" (up to {rule.maximum}).'
    return f'Select no more than {rule.maximum} options for "{name}".'


def validate_selection(
    groups: Iterable[ModifierGroup], selection: ModifierSelection
) -> List[SelectionIssue]:
    issues: List[SelectionIssue] = []
    for group in groups:
        rule = rule_for(group)
        count = len(selected_options(group, selection))
        if rule.admits(count):
            continue
        issues.append(
            SelectionIssue(
                group_id=group.group_id,
                group_name=group.group_name,
                minimum=rule.minimum,
                maximum=rule.maximum,
                message=_issue_message(group.group_name, rule, count),
            )
        )
    return issues


def ensure_valid_selection(groups: Iterable[ModifierGroup], selection: ModifierSelection) -> None:
    issues = validate_selection(groups, selection)
    if issues:
        raise ModifierValidationError(issues)


def toggle_option(
    group: ModifierGroup, selection: ModifierSelection, option_id: str
) -> Dict[str, List[str]]:
    """Return a new selection with ``option_id`` toggled in ``group``.

    Single-choice groups replace their current pick. Other groups ignore
    additions once the maximum is reached.
    """
    updated = {group_id: list(option_ids) for group_id, option_ids in selection.items()}
    current = updated.get(group.group_id, [])
    rule = rule_for(group)

    if option_id in current:
        updated[group.group_id] = [value for value in current if value != option_id]
    elif rule.maximum == 1:
        updated[group.group_id] = [option_id]
    elif len(current) < rule.maximum:
        updated[group.group_id] = current + [option_id]
    return updated


def build_extras_payload(
    groups: Iterable[ModifierGroup], selection: ModifierSelection
) -> ExtrasPayload:
    return ExtrasPayload(
        groups=tuple(
            PayloadGroup(
                group_id=group.group_id,
                name=group.group_name,
                selected=tuple(
                    SelectedOption(id=option.id, name=option.name, price_cents=option.price_cents)
                    for option in selected_options(group, selection)
                ),
            )
            for group in groups
        )
    )


@dataclass(frozen=True)
class ResolvedGroup:
    name: str
    options: Tuple[SelectedOption, ...]

    @property
    def joined_names(self) -> str:
        return ", ".join(option.name.strip() or "Selected" for option in self.options)


@dataclass(frozen=True)
class ModifierResolution:
    groups: Tuple[ResolvedGroup, ...] = ()
    unit_increment: int = 0
    quantity: int = 1

    @property
    def lines(self) -> List[Tuple[str, str]]:
        return [(group.name, group.joined_names) for group in self.groups]

    @property
    def total_increment(self) -> int:
        return self.unit_increment * self.quantity


def resolve_payload(payload: Optional[ExtrasPayload], quantity: int = 1) -> ModifierResolution:
    if payload is None:
        return ModifierResolution(quantity=quantity)
    groups: List[ResolvedGroup] = []
    unit_increment = 0
    for group in payload.groups:
        if not group.selected:
            continue
        groups.append(ResolvedGroup(name=group.name.strip() or "Option", options=group.selected))
        unit_increment += sum(option.price_cents for option in group.selected)
    return ModifierResolution(groups=tuple(groups), unit_increment=unit_increment, quantity=quantity)


def resolve_selection(
    groups: Iterable[ModifierGroup], selection: ModifierSelection, quantity: int = 1
) -> ModifierResolution:
    return resolve_payload(build_extras_payload(groups, selection), quantity)


def parse_extra_for(note: Optional[str]) -> Optional[str]:
    """Return the parent name encoded in a legacy ``EXTRA FOR:`` note."""
    text = (note or "").strip()
    if not text.upper().startswith(EXTRA_FOR_PREFIX):
        return None
    target = text[len(EXTRA_FOR_PREFIX):].strip()
    return target or None


def normalize_name(value: Optional[str]) -> str:
    text = _PUNCTUATION.sub("", (value or "").lower())
    return _WHITESPACE.sub(" ", text).strip()


class ExtrasResolver(Protocol):
    kind: str

    def modifiers(self, item: LineItem) -> ModifierResolution: ...

    def target_name(self, item: LineItem) -> Optional[str]: ...


class StructuredExtrasResolver:
    kind = "structured"

    def modifiers(self, item: LineItem) -> ModifierResolution:
        return resolve_payload(item.extras, item.quantity)

    def target_name(self, item: LineItem) -> Optional[str]:
        return None


class LegacyNoteResolver:
    """Read-time shim for extras stored as separate lines noted ``EXTRA FOR: <parent>``."""

    kind = "legacy-heuristic"

    def modifiers(self, item: LineItem) -> ModifierResolution:
        return resolve_payload(item.extras, item.quantity)

    def target_name(self, item: LineItem) -> Optional[str]:
        return parse_extra_for(item.note)


STRUCTURED_RESOLVER = StructuredExtrasResolver()
LEGACY_RESOLVER = LegacyNoteResolver()


def resolver_for(item: LineItem) -> ExtrasResolver:
    if parse_extra_for(item.note) is not None:
        return LEGACY_RESOLVER
    return STRUCTURED_RESOLVER


@dataclass
class ResolvedLine:
    item: LineItem
    modifiers: ModifierResolution
    target_name: Optional[str] = None
    attached: List[LineItem] = field(default_factory=list)

    @property
    def is_extra(self) -> bool:
        return self.target_name is not None

    @property
    def unmatched(self) -> bool:
        """Only meaningful on lines returned by resolve_items."""
        return self.is_extra


def find_parent_index(mains: Sequence[ResolvedLine], target_name: str) -> Optional[int]:
    """First exact normalized match, else first containment match either way round."""
    wanted = normalize_name(target_name)
    if not wanted:
        return None
    names = [normalize_name(line.item.name) for line in mains]
    for index, name in enumerate(names):
        if name == wanted:
            return index
    for index, name in enumerate(names):
        if name and (wanted in name or name in wanted):
            return index
    return None


def resolve_items(items: Iterable[LineItem]) -> List[ResolvedLine]:
    """Group an order's items into mains with their legacy extras attached.

    Extras that match no main are kept as trailing top-level lines.
    """
    mains: List[ResolvedLine] = []
    extras: List[ResolvedLine] = []
    for item in items:
        resolver = resolver_for(item)
        line = ResolvedLine(
            item=item,
            modifiers=resolver.modifiers(item),
            target_name=resolver.target_name(item),
        )
        (extras if line.is_extra else mains).append(line)

    unmatched: List[ResolvedLine] = []
    for extra in extras:
        index = find_parent_index(mains, extra.target_name or "")
        if index is None:
            unmatched.append(extra)
        else:
            mains[index].attached.append(extra.item)
    return mains + unmatched
