"""Pre-run cleanup of workflow topology."""

from dataclasses import dataclass, field
from typing import List, Sequence

from ..models.core import Edge
from .logging import get_logger

logger = get_logger(__name__)


@dataclass
class CleanupResult:
    nodes: list
    edges: List[Edge]
    removed_count: int = 0
    removed_edge_ids: List[str] = field(default_factory=list)


class EdgeValidator:
    """Drops edges that cannot be followed.

    An edge is removed when its source or target node does not exist, when
    it loops a node onto itself, or when it repeats an earlier edge with the
    same source, target and label. Nodes are returned unchanged.
    """

    def clean(self, nodes: Sequence, edges: Sequence[Edge]) -> CleanupResult:
        node_ids = {node.id for node in nodes}
        seen = set()
        kept: List[Edge] = []
        removed: List[str] = []

        for edge in edges:
            key = (edge.source, edge.target, edge.label)
            if edge.source not in node_ids or edge.target not in node_ids:
                reason = "dangling"
            elif edge.source == edge.target:
                reason = "self-loop"
            elif key in seen:
                reason = "duplicate"
            else:
                seen.add(key)
                kept.append(edge)
                continue
            logger.warning(f"Removing {reason} edge {edge.id} ({edge.source} -> {edge.target})")
            removed.append(edge.id)

        return CleanupResult(
            nodes=list(nodes),
            edges=kept,
            removed_count=len(removed),
            removed_edge_ids=removed,
        )
