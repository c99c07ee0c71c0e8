"""Context packing components."""

from .service import ContextPacker, PackingConfig, select_greedy_with_skip, truncate_body

__all__ = ["ContextPacker", "PackingConfig", "select_greedy_with_skip", "truncate_body"]
