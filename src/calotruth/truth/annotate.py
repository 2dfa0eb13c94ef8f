from __future__ import annotations
from typing import List, Tuple

from calotruth.truth.graph import DecayGraph


def annotate_cumulative_hits(graph: DecayGraph) -> int:
    """
    Fill cumulative hit counts bottom-up, starting from every root.

    Post-order walk with an explicit stack of (vertex, next child position),
    so chain depth is bounded only by memory. On the way back up:

        edge.cumulative_hits   = edge.hits + child.cumulative_hits
        vertex.cumulative_hits = sum of its outgoing edges' cumulative_hits

    Counts are reset first, so vertices not reachable from a root end at 0.
    Returns the number of vertices visited.
    """
    for v in graph.vertices:
        v.cumulative_hits = 0
    for e in graph.edges:
        e.cumulative_hits = 0

    visited = bytearray(len(graph.vertices))
    n_visited = 0
    for root in graph.roots():
        visited[root] = 1
        n_visited += 1
        stack: List[Tuple[int, int]] = [(root, 0)]
        while stack:
            v, pos = stack[-1]
            out = graph.out_edges[v]
            if pos < len(out):
                stack[-1] = (v, pos + 1)
                child = graph.edges[out[pos]].child
                if not visited[child]:
                    visited[child] = 1
                    n_visited += 1
                    stack.append((child, 0))
                continue

            stack.pop()
            total = 0
            for ei in out:
                e = graph.edges[ei]
                e.cumulative_hits = e.hits + graph.vertices[e.child].cumulative_hits
                total += e.cumulative_hits
            graph.vertices[v].cumulative_hits = total

    return n_visited
