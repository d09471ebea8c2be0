"""
Keystone CRM - In-memory Motor stand-in

Collections support the subset of the query language used by the services
(equality, $gt/$gte/$lt/$lte, $in/$nin, $exists, $type string, $or/$and) with Mongo's
type bracketing (a datetime never compares to a string). Aggregations run
$match and $group with $max over $field, $eq and $cond expressions.
"""

from datetime import datetime
from types import SimpleNamespace

from bson import ObjectId

_MISSING = object()


# ═══════════════════════════════════════════════════════════════
# QUERY MATCHING
# ═══════════════════════════════════════════════════════════════

def _comparable(a, b) -> bool:
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return not isinstance(a, bool) and not isinstance(b, bool)
    return type(a) is type(b) or (isinstance(a, datetime) and isinstance(b, datetime))


def _match_operator(value, op, arg) -> bool:
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if op == "$in":
        return any(_match_value(value, a) for a in arg)
    if op == "$nin":
        return not any(_match_value(value, a) for a in arg)
    if op == "$type":
        return arg == "string" and isinstance(value, str)
    if value is _MISSING or value is None or not _comparable(value, arg):
        return False
    if op == "$gt":
        return value > arg
    if op == "$gte":
        return value >= arg
    if op == "$lt":
        return value < arg
    if op == "$lte":
        return value <= arg
    raise NotImplementedError(op)


def _match_value(value, cond) -> bool:
    if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
        return all(_match_operator(value, op, arg) for op, arg in cond.items())
    if cond is None:
        return value is _MISSING or value is None
    return value is not _MISSING and value == cond


def project(doc: dict, projection) -> dict:
    if not projection:
        return dict(doc)
    excluded = {k for k, v in projection.items() if not v}
    included = {k for k, v in projection.items() if v}
    if included:
        keep = included | ({"_id"} - excluded)
        return {k: v for k, v in doc.items() if k in keep}
    return {k: v for k, v in doc.items() if k not in excluded}


def matches(doc: dict, query: dict) -> bool:
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, q) for q in cond):
                return False
        elif key == "$and":
            if not all(matches(doc, q) for q in cond):
                return False
        elif not _match_value(doc.get(key, _MISSING), cond):
            return False
    return True


# ═══════════════════════════════════════════════════════════════
# AGGREGATION
# ═══════════════════════════════════════════════════════════════

def evaluate(doc: dict, expr):
    if isinstance(expr, str) and expr.startswith("$"):
        return doc.get(expr[1:])
    if isinstance(expr, dict) and len(expr) == 1:
        (op, args), = expr.items()
        if op == "$eq":
            left, right = (evaluate(doc, a) for a in args)
            return left == right
        if op == "$cond":
            cond, then, otherwise = args
            return evaluate(doc, then) if evaluate(doc, cond) else evaluate(doc, otherwise)
        if op.startswith("$"):
            raise NotImplementedError(op)
    return expr


def _accumulate(docs, spec):
    (op, expr), = spec.items()
    if op != "$max":
        raise NotImplementedError(op)
    # $max ignores null and missing values
    values = [v for v in (evaluate(d, expr) for d in docs) if v is not None]
    return max(values) if values else None


def group(docs, spec: dict) -> list:
    buckets = {}
    for doc in docs:
        buckets.setdefault(evaluate(doc, spec["_id"]), []).append(doc)
    rows = []
    for key, members in buckets.items():
        row = {"_id": key}
        for field, acc in spec.items():
            if field != "_id":
                row[field] = _accumulate(members, acc)
        rows.append(row)
    return rows


def run_pipeline(docs, pipeline) -> list:
    for stage in pipeline:
        (op, arg), = stage.items()
        if op == "$match":
            docs = [d for d in docs if matches(d, arg)]
        elif op == "$group":
            docs = group(docs, arg)
        else:
            raise NotImplementedError(op)
    return list(docs)


# ═══════════════════════════════════════════════════════════════
# COLLECTIONS
# ═══════════════════════════════════════════════════════════════

class FakeCursor:
    def __init__(self, docs, projection=None):
        self.docs = list(docs)
        self.projection = projection

    def sort(self, key, direction=1):
        self.docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return self

    def limit(self, n):
        if n:
            self.docs = self.docs[:n]
        return self

    async def to_list(self, length=None):
        docs = self.docs if length is None else self.docs[:length]
        return [project(d, self.projection) for d in docs]


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self.queries = []
        self.aggregate_error = None
        self.bulk_calls = []
        self.pipelines = []
        self.indexes = []

    def _find_raw(self, query):
        return [d for d in self.docs if matches(d, query)]

    def find(self, query=None, projection=None):
        self.queries.append(query)
        return FakeCursor(self._find_raw(query), projection)

    async def find_one(self, query=None, projection=None):
        found = self._find_raw(query)
        return project(found[0], projection) if found else None

    async def insert_one(self, doc):
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def insert_many(self, docs):
        for doc in docs:
            await self.insert_one(doc)

    async def update_one(self, query, update, upsert=False):
        found = self._find_raw(query)
        if found:
            before = dict(found[0])
            found[0].update(update.get("$set", {}))
            modified = 1 if found[0] != before else 0
            return SimpleNamespace(matched_count=1, modified_count=modified, upserted_id=None)
        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
        doc = {k: v for k, v in query.items() if not k.startswith("$")}
        doc.update(update.get("$setOnInsert", {}))
        doc.update(update.get("$set", {}))
        await self.insert_one(doc)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])

    async def delete_one(self, query):
        found = self._find_raw(query)
        if found:
            self.docs.remove(found[0])
        return SimpleNamespace(deleted_count=len(found[:1]))

    async def bulk_write(self, ops, ordered=True):
        self.bulk_calls.append({"ops": len(ops), "ordered": ordered})
        modified = 0
        for op in ops:
            result = await self.update_one(op._filter, op._doc)
            modified += result.modified_count
        return SimpleNamespace(modified_count=modified)

    def aggregate(self, pipeline):
        if self.aggregate_error is not None:
            raise self.aggregate_error
        self.pipelines.append(pipeline)
        return FakeCursor(run_pipeline(self.docs, pipeline))

    async def create_index(self, keys, **kwargs):
        self.indexes.append(keys)
        return None


class FakeDB:
    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]
