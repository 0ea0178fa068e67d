"""
DocFlow Hub - Storage Collaborator

Per-collection storage used by the workflow core. Predicates and patches are
Mongo-style dicts so the same calls run against MongoDB (motor) in production
and against the in-memory store in demo mode and tests.

Supported predicate subset: equality, $in, $nin, $ne, $exists, $or, and
dotted paths that descend into arrays (e.g. "history.actor_id").
Supported patch operators: $set (including the positional "arr.$.field"
form) and $push.

conditional_update() is the atomic primitive: the predicate is evaluated and
the patch applied in one step per document. The memory store never awaits
between the check and the write, so it holds the same guarantee inside one
event loop.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

logger = logging.getLogger(__name__)

SortSpec = List[Tuple[str, int]]

_MISSING = object()


class DocumentStore(ABC):
    """Storage interface for one collection of id-keyed records."""

    @abstractmethod
    async def get(self, doc_id: str) -> Optional[Dict]:
        ...

    @abstractmethod
    async def find(
        self,
        predicate: Optional[Dict] = None,
        sort: Optional[SortSpec] = None,
        limit: int = 0,
    ) -> List[Dict]:
        ...

    @abstractmethod
    async def create(self, doc: Dict) -> Dict:
        ...

    @abstractmethod
    async def conditional_update(self, doc_id: str, predicate: Dict, patch: Dict) -> Optional[Dict]:
        """Apply patch to doc_id only if predicate still holds. Returns the updated doc or None."""

    @abstractmethod
    async def update_many(self, predicate: Dict, patch: Dict) -> int:
        ...

    @abstractmethod
    async def count(self, predicate: Optional[Dict] = None) -> int:
        ...


# =============================================================================
# MONGODB (MOTOR)
# =============================================================================

class MongoCollectionStore(DocumentStore):
    """Store backed by a motor collection. Records are keyed by "id", never "_id"."""

    def __init__(self, collection):
        self.collection = collection

    async def get(self, doc_id: str) -> Optional[Dict]:
        return await self.collection.find_one({"id": doc_id}, {"_id": 0})

    async def find(self, predicate=None, sort=None, limit=0) -> List[Dict]:
        cursor = self.collection.find(predicate or {}, {"_id": 0})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=None)

    async def create(self, doc: Dict) -> Dict:
        record = copy.deepcopy(doc)
        await self.collection.insert_one(record)
        record.pop("_id", None)
        return record

    async def conditional_update(self, doc_id: str, predicate: Dict, patch: Dict) -> Optional[Dict]:
        return await self.collection.find_one_and_update(
            {"id": doc_id, **predicate},
            patch,
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    async def update_many(self, predicate: Dict, patch: Dict) -> int:
        result = await self.collection.update_many(predicate, patch)
        return result.modified_count

    async def count(self, predicate=None) -> int:
        return await self.collection.count_documents(predicate or {})


# =============================================================================
# IN-MEMORY (DEMO MODE / TESTS)
# =============================================================================

def _resolve(value: Any, path: List[str]) -> List[Any]:
    """All values reachable at path, descending into lists like MongoDB does."""
    if not path:
        if isinstance(value, list):
            return [value] + list(value)
        return [value]
    if isinstance(value, list):
        found = []
        for item in value:
            found.extend(_resolve(item, path))
        return found or [_MISSING]
    if not isinstance(value, dict):
        return [_MISSING]
    head, rest = path[0], path[1:]
    if head not in value:
        return [_MISSING]
    return _resolve(value[head], rest)


def _normalize(candidate: Any) -> Any:
    return None if candidate is _MISSING else candidate


def _match_condition(candidates: List[Any], condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$eq":
                ok = any(_normalize(c) == operand for c in candidates)
            elif op == "$ne":
                ok = all(_normalize(c) != operand for c in candidates)
            elif op == "$in":
                ok = any(_normalize(c) in operand for c in candidates)
            elif op == "$nin":
                ok = all(_normalize(c) not in operand for c in candidates)
            elif op == "$exists":
                present = any(c is not _MISSING for c in candidates)
                ok = present if operand else not present
            else:
                raise ValueError(f"Unsupported query operator: {op}")
            if not ok:
                return False
        return True
    return any(_normalize(c) == condition for c in candidates)


def matches(doc: Dict, predicate: Optional[Dict]) -> bool:
    """Evaluate a Mongo-style predicate against a plain dict."""
    for key, condition in (predicate or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif not _match_condition(_resolve(doc, key.split(".")), condition):
            return False
    return True


def _positional_index(doc: Dict, predicate: Dict, array_field: str) -> Optional[int]:
    prefix = array_field + "."
    conditions = {k[len(prefix):]: v for k, v in predicate.items() if k.startswith(prefix)}
    for index, element in enumerate(doc.get(array_field) or []):
        if all(
            _match_condition(_resolve(element, sub.split(".")), cond)
            for sub, cond in conditions.items()
        ):
            return index
    return None


def _set_path(doc: Dict, path: str, value: Any, predicate: Dict) -> None:
    if ".$." in path:
        array_field, field = path.split(".$.", 1)
        index = _positional_index(doc, predicate, array_field)
        if index is None:
            raise ValueError(f"Positional update on '{path}' did not match an array element")
        target = doc[array_field][index]
        _set_path(target, field, value, {})
        return
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = copy.deepcopy(value)


def apply_patch(doc: Dict, patch: Dict, predicate: Optional[Dict] = None) -> None:
    for op, fields in patch.items():
        if op == "$set":
            for path, value in fields.items():
                _set_path(doc, path, value, predicate or {})
        elif op == "$push":
            for path, value in fields.items():
                doc.setdefault(path, []).append(copy.deepcopy(value))
        else:
            raise ValueError(f"Unsupported update operator: {op}")


def _sort_key(field: str):
    def key(doc: Dict):
        value = doc.get(field)
        return (value is not None, value if value is not None else "")
    return key


class MemoryCollectionStore(DocumentStore):
    """In-memory store with the same semantics as MongoCollectionStore."""

    def __init__(self, name: str = "collection"):
        self.name = name
        self._records: Dict[str, Dict] = {}

    async def get(self, doc_id: str) -> Optional[Dict]:
        record = self._records.get(doc_id)
        return copy.deepcopy(record) if record is not None else None

    async def find(self, predicate=None, sort=None, limit=0) -> List[Dict]:
        found = [r for r in self._records.values() if matches(r, predicate)]
        for field, direction in reversed(sort or []):
            found.sort(key=_sort_key(field), reverse=direction < 0)
        if limit:
            found = found[:limit]
        return copy.deepcopy(found)

    async def create(self, doc: Dict) -> Dict:
        if doc["id"] in self._records:
            raise ValueError(f"Duplicate id '{doc['id']}' in {self.name}")
        self._records[doc["id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    async def conditional_update(self, doc_id: str, predicate: Dict, patch: Dict) -> Optional[Dict]:
        record = self._records.get(doc_id)
        if record is None or not matches(record, predicate):
            return None
        updated = copy.deepcopy(record)
        apply_patch(updated, patch, predicate)
        self._records[doc_id] = updated
        return copy.deepcopy(updated)

    async def update_many(self, predicate: Dict, patch: Dict) -> int:
        modified = 0
        for doc_id, record in list(self._records.items()):
            if not matches(record, predicate):
                continue
            updated = copy.deepcopy(record)
            apply_patch(updated, patch, predicate)
            if updated != record:
                self._records[doc_id] = updated
                modified += 1
        return modified

    async def count(self, predicate=None) -> int:
        return sum(1 for r in self._records.values() if matches(r, predicate))


# =============================================================================
# FACTORY
# =============================================================================

COLLECTIONS = ("documents", "workflows", "users", "audit_events")


def build_stores(backend: str, db=None) -> Dict[str, DocumentStore]:
    """Create one store per collection for the configured backend."""
    if backend == "memory":
        logger.info("Using in-memory storage (demo mode, nothing is persisted)")
        return {name: MemoryCollectionStore(name) for name in COLLECTIONS}
    if backend == "mongo":
        if db is None:
            raise ValueError("Mongo storage backend requires a database handle")
        return {name: MongoCollectionStore(db[name]) for name in COLLECTIONS}
    raise ValueError(f"Unknown storage backend: {backend}")
