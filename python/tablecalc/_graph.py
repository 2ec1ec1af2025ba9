"""Dependency graph between cells, discovered while formulas are expanded."""

from __future__ import annotations

from tablecalc._protocol import Position


class DependencyGraph:
    """Tracks which cells each cell read (parents) and is read by (children).

    Edges are recorded lazily: a formula registers an edge for every cell it
    reads while being expanded, and a spill registers an edge from the origin
    formula to every cell it writes. Lists keep insertion order and hold no
    duplicates.
    """

    __slots__ = ("parents", "children")

    def __init__(self) -> None:
        # cell -> cells it reads from
        self.parents: dict[Position, list[Position]] = {}
        # cell -> cells that read from it (reverse edges)
        self.children: dict[Position, list[Position]] = {}

    def add_edge(self, source: Position, reader: Position) -> None:
        """Record that *reader* depends on *source*."""
        parents = self.parents.setdefault(reader, [])
        if source not in parents:
            parents.append(source)
        children = self.children.setdefault(source, [])
        if reader not in children:
            children.append(reader)

    def detach(self, position: Position) -> None:
        """Drop every edge into *position* (it no longer reads anything)."""
        for source in self.parents.pop(position, []):
            readers = self.children.get(source)
            if readers and position in readers:
                readers.remove(position)

    def sources_of(self, position: Position) -> list[Position]:
        return list(self.parents.get(position, ()))

    def readers_of(self, position: Position) -> list[Position]:
        return list(self.children.get(position, ()))

    def snapshot(
        self, max_rows: int, max_cols: int
    ) -> tuple[list[list[tuple[Position, ...]]], list[list[tuple[Position, ...]]]]:
        """Row-major grids of parent and child tuples."""
        parents = [
            [tuple(self.parents.get((r, c), ())) for c in range(max_cols)]
            for r in range(max_rows)
        ]
        children = [
            [tuple(self.children.get((r, c), ())) for c in range(max_cols)]
            for r in range(max_rows)
        ]
        return parents, children
