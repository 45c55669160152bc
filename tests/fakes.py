"""In-memory stand-ins for the Motor objects the services use.

Every async call yields to the event loop once, so coroutines running
under ``asyncio.gather`` interleave between document reads and writes
the way concurrent requests do against a real server.
"""
import asyncio
import copy
from datetime import datetime
from types import SimpleNamespace

from bson import ObjectId
from pymongo.errors import DuplicateKeyError


def _candidates(doc, path: str) -> list:
    current = [doc]
    for part in path.split("."):
        found = []
        for item in current:
            if isinstance(item, dict):
                if part in item:
                    found.append(item[part])
            elif isinstance(item, list):
                found.extend(el[part] for el in item if isinstance(el, dict) and part in el)
        current = found

    values = []
    for value in current:
        values.append(value)
        if isinstance(value, list):
            values.extend(value)
    return values


def _equals(candidates: list, expected) -> bool:
    if not candidates:
        return expected is None
    return any(value == expected for value in candidates)


def _compare(candidates: list, op: str, bound) -> bool:
    for value in candidates:
        if value is None:
            continue
        try:
            if op == "$lt" and value < bound:
                return True
            if op == "$lte" and value <= bound:
                return True
            if op == "$gt" and value > bound:
                return True
            if op == "$gte" and value >= bound:
                return True
        except TypeError:
            continue
    return False


def _match_condition(candidates: list, condition) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, arg in condition.items():
            if op == "$ne":
                ok = not _equals(candidates, arg)
            elif op == "$in":
                ok = any(_equals(candidates, value) for value in arg)
            elif op == "$nin":
                ok = not any(_equals(candidates, value) for value in arg)
            elif op == "$exists":
                ok = bool(candidates) == bool(arg)
            elif op in ("$lt", "$lte", "$gt", "$gte"):
                ok = _compare(candidates, op, arg)
            else:
                raise NotImplementedError(op)
            if not ok:
                return False
        return True
    return _equals(candidates, condition)


def matches(doc: dict, query: dict) -> bool:
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif not _match_condition(_candidates(doc, key), condition):
            return False
    return True


def _get_path(doc: dict, path: str):
    current = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _set_path(doc: dict, path: str, value) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = copy.deepcopy(value)


def apply_update(doc: dict, update: dict, inserting: bool = False) -> None:
    for op, fields in update.items():
        for path, value in fields.items():
            if op == "$set":
                _set_path(doc, path, value)
            elif op == "$setOnInsert":
                if inserting:
                    _set_path(doc, path, value)
            elif op == "$unset":
                parent = _get_path(doc, path.rsplit(".", 1)[0]) if "." in path else doc
                if isinstance(parent, dict):
                    parent.pop(path.rsplit(".", 1)[-1], None)
            elif op == "$inc":
                _set_path(doc, path, (_get_path(doc, path) or 0) + value)
            elif op == "$push":
                items = list(_get_path(doc, path) or [])
                if isinstance(value, dict) and "$each" in value:
                    items.extend(copy.deepcopy(value["$each"]))
                    if "$slice" in value:
                        size = value["$slice"]
                        items = items[size:] if size < 0 else items[:size]
                else:
                    items.append(copy.deepcopy(value))
                _set_path(doc, path, items)
            else:
                raise NotImplementedError(op)


class FakeCursor:
    def __init__(self, collection: "FakeCollection", query: dict):
        self.collection = collection
        self.query = query
        self._sort = None
        self._limit = None

    def sort(self, key, direction=1):
        self._sort = (key, direction)
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    async def to_list(self, length=None):
        await asyncio.sleep(0)
        docs = [copy.deepcopy(d) for d in self.collection.docs if matches(d, self.query)]
        if self._sort:
            key, direction = self._sort
            docs.sort(
                key=lambda d: (_get_path(d, key) is None, _get_path(d, key) or 0),
                reverse=direction < 0,
            )
        if self._limit:
            docs = docs[: self._limit]
        if length is not None:
            docs = docs[:length]
        return docs


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict] = []
        self.unique_fields: set[str] = set()
        self.fail_inserts = False

    def _check_unique(self, doc: dict) -> None:
        for existing in self.docs:
            if existing["_id"] == doc["_id"]:
                raise DuplicateKeyError(f"E11000 duplicate key in {self.name}: _id")
            for field in self.unique_fields:
                value = _get_path(doc, field)
                if value is not None and _get_path(existing, field) == value:
                    raise DuplicateKeyError(f"E11000 duplicate key in {self.name}: {field}")

    async def create_index(self, keys, unique=False, **kwargs):
        if unique and isinstance(keys, str):
            self.unique_fields.add(keys)
        return keys if isinstance(keys, str) else "_".join(k for k, _ in keys)

    async def find_one(self, query=None, *args, session=None, **kwargs):
        await asyncio.sleep(0)
        for doc in self.docs:
            if matches(doc, query or {}):
                return copy.deepcopy(doc)
        return None

    def find(self, query=None, *args, session=None, **kwargs):
        return FakeCursor(self, query or {})

    async def count_documents(self, query=None, session=None):
        await asyncio.sleep(0)
        return sum(1 for doc in self.docs if matches(doc, query or {}))

    async def insert_one(self, doc, session=None):
        await asyncio.sleep(0)
        if self.fail_inserts:
            raise RuntimeError(f"insert into {self.name} failed")
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def insert_many(self, docs, session=None):
        await asyncio.sleep(0)
        ids = []
        for doc in docs:
            doc.setdefault("_id", ObjectId())
            self._check_unique(doc)
            self.docs.append(copy.deepcopy(doc))
            ids.append(doc["_id"])
        return SimpleNamespace(inserted_ids=ids)

    def _upsert(self, query: dict, update: dict) -> dict:
        doc = {k: copy.deepcopy(v) for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
        doc.setdefault("_id", ObjectId())
        apply_update(doc, update, inserting=True)
        self.docs.append(doc)
        return doc

    async def find_one_and_update(self, query, update, *args, return_document=False, upsert=False, session=None, **kwargs):
        await asyncio.sleep(0)
        for doc in self.docs:
            if matches(doc, query):
                before = copy.deepcopy(doc)
                apply_update(doc, update)
                return copy.deepcopy(doc) if return_document else before
        if upsert:
            doc = self._upsert(query, update)
            return copy.deepcopy(doc) if return_document else None
        return None

    async def update_one(self, query, update, upsert=False, session=None):
        await asyncio.sleep(0)
        for doc in self.docs:
            if matches(doc, query):
                before = copy.deepcopy(doc)
                apply_update(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=int(before != doc), upserted_id=None)
        if upsert:
            doc = self._upsert(query, update)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def update_many(self, query, update, upsert=False, session=None):
        await asyncio.sleep(0)
        matched = modified = 0
        for doc in self.docs:
            if matches(doc, query):
                before = copy.deepcopy(doc)
                apply_update(doc, update)
                matched += 1
                modified += int(before != doc)
        return SimpleNamespace(matched_count=matched, modified_count=modified, upserted_id=None)


class FakeSession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def with_transaction(self, callback):
        return await callback(self)


class FakeClient:
    async def start_session(self):
        return FakeSession()


class FakeDatabase:
    def __init__(self):
        self.client = FakeClient()
        self.collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]


def goal_doc(now: datetime, **overrides) -> dict:
    """Stored goal document with sensible defaults."""
    doc = {
        "_id": ObjectId(),
        "user_id": "user123",
        "empowered_by": None,
        "title": "Run three times a week",
        "description": "",
        "experience_id": "exp1",
        "experience_gift_id": None,
        "target_count": 2,
        "sessions_per_week": 3,
        "target_hours": 0,
        "target_minutes": 30,
        "initial_target_count": 2,
        "initial_sessions_per_week": 3,
        "current_count": 0,
        "weekly_count": 0,
        "weekly_log_dates": [],
        "week_start_at": None,
        "is_week_completed": False,
        "is_completed": False,
        "approval_status": "approved",
        "giver_action_taken": False,
        "personalized_next_hint": None,
        "hints": [],
        "valentine_challenge_id": None,
        "partner_goal_id": None,
        "is_revealed": True,
        "is_finished": False,
        "is_unlocked": False,
        "active_session_started_at": None,
        "last_session_at": None,
        "version": 0,
        "created_at": now,
        "updated_at": now,
    }
    doc.update(overrides)
    return doc
