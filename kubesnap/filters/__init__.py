"""Filter engine for kubesnap.

Pure predicate evaluation used by both the collection engine (what to fetch
and persist) and the emulator (label selectors).

Submodules:
    engine    -- Predicate / Filter / admit(): include-exclude rules over
                 namespace, group, kind, name and label.
    selector  -- Kubernetes label selector grammar on top of the engine's
                 label matching.
"""

from kubesnap.filters.engine import (
    Field,
    Filter,
    FilterSyntaxError,
    MatchMode,
    ObjectDescriptor,
    Polarity,
    Predicate,
    admit,
)
from kubesnap.filters.selector import FieldSelector, LabelSelector, parse_field_selector, parse_selector

__all__ = [
    "Field",
    "FieldSelector",
    "Filter",
    "FilterSyntaxError",
    "LabelSelector",
    "MatchMode",
    "ObjectDescriptor",
    "Polarity",
    "Predicate",
    "admit",
    "parse_field_selector",
    "parse_selector",
]
