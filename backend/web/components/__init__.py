# CertChain Component System
# Pure Python Components for type-safe HTML generation

from .base import Component
from .layout import Layout
from .navigation import Navigation, DEFAULT_SECTIONS, resolve_sections

__all__ = [
    "Component",
    "Layout",
    "Navigation",
    "DEFAULT_SECTIONS",
    "resolve_sections",
]
