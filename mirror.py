"""
In-process working copy of portfolio documents.

The mirror is the canonical read path. It is populated at startup from the
durable store, written on every mutation and never expires entries on its own.
All operations are synchronous, so a read-modify-write on one entry cannot be
interleaved with another coroutine's write.
"""

import copy
from typing import Any, Dict, Iterable

from errors import NotFound, ValidationError


def shallow_merge(document: Dict[str, Any], partial: Dict[str, Any]) -> Dict[str, Any]:
    """Top-level keys in ``partial`` replace those in ``document``; others are kept."""
    merged = dict(document)
    merged.update(partial)
    return merged


class ShadowMirror:
    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}

    def __contains__(self, owner_id: str) -> bool:
        return owner_id in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def load(self, documents: Iterable[Dict[str, Any]]) -> int:
        count = 0
        for doc in documents:
            self.insert(doc)
            count += 1
        return count

    def get(self, owner_id: str) -> Dict[str, Any]:
        try:
            return copy.deepcopy(self._documents[owner_id])
        except KeyError:
            raise NotFound("Portfolio not found")

    def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        owner_id = document.get("ownerId")
        if not owner_id:
            raise ValidationError("ownerId is required")
        self._documents[owner_id] = copy.deepcopy(document)
        return copy.deepcopy(document)

    def put(self, owner_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge ``partial`` into an existing entry. Never creates one."""
        if owner_id not in self._documents:
            raise NotFound("Portfolio not found")
        merged = shallow_merge(self._documents[owner_id], copy.deepcopy(partial))
        merged["ownerId"] = owner_id
        self._documents[owner_id] = merged
        return copy.deepcopy(merged)

    def evict(self, owner_id: str) -> bool:
        return self._documents.pop(owner_id, None) is not None
