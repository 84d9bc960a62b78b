# profile_engine/ordering.py
from __future__ import annotations
from typing import Iterable, List, Optional, Sequence


def order_tables(
    tables: Iterable[str],
    root_table: str,
    document_table: str,
    creation_order: Optional[Sequence[str]] = None,
) -> List[str]:
    """
    Root first, document table last, everything else in creation order.
    Tables the creation order does not know about (or every table, when the
    store cannot report one) fall back to alphabetical, after the known ones.
    """
    rank = {name: i for i, name in enumerate(creation_order or [])}
    unknown = len(rank)

    def _key(name: str):
        if name == root_table:
            return (0, 0, name)
        if name == document_table:
            return (2, 0, name)
        return (1, rank.get(name, unknown), name)

    return sorted(set(tables), key=_key)
