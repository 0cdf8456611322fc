"""
Role-aware menu filtering.

Why:
    Sidebar sections are declared once as data (title, target, icon, allowed
    roles). Filtering for the current effective role is a pure function, so the
    HTML component, the JSON navigation endpoint and tests share one rule.

Rules:
    - An item without `allowed_roles` is visible to everyone.
    - super_admin sees every item.
    - Otherwise an item is visible when the effective role satisfies at least
      one recognised listed role under `has_access` (so "instructor" also
      admits issuer and institution_admin). Unknown listed roles admit nobody.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from .roles import has_any_access


@dataclass(frozen=True)
class NavItem:
    title: str
    target: str  # role-agnostic, resolved with paths.build_path
    icon: str = ""
    allowed_roles: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NavSection:
    title: str
    items: Tuple[NavItem, ...] = field(default_factory=tuple)
    hide_when_empty: bool = False


def is_visible(item: NavItem, effective_role: object) -> bool:
    if not item.allowed_roles:
        return True
    return has_any_access(effective_role, item.allowed_roles)


def filter_visible(items: Iterable[NavItem], effective_role: object) -> List[NavItem]:
    """Return the visible items in their original order."""
    return [item for item in items if is_visible(item, effective_role)]


def visible_sections(sections: Sequence[NavSection], effective_role: object) -> List[NavSection]:
    """Filter every section independently.

    Sections marked `hide_when_empty` are dropped when nothing survives.
    """
    result: List[NavSection] = []
    for section in sections:
        items = tuple(filter_visible(section.items, effective_role))
        if not items and section.hide_when_empty:
            continue
        result.append(NavSection(title=section.title, items=items, hide_when_empty=section.hide_when_empty))
    return result


__all__ = ["NavItem", "NavSection", "is_visible", "filter_visible", "visible_sections"]
