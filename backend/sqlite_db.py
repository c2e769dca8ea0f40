"""
SQLite adapter that mimics the Motor/MongoDB async API.

The notification engine talks to its collections through a small
document-store surface (find, find_one, insert_one, update_one, ...)
backed by a single SQLite file, so no database server is required.

Architecture:
  - Each collection becomes a SQLite table with:
    - _id TEXT PRIMARY KEY (auto-generated hex id if not provided)
    - data TEXT (the full document as JSON)
  - Query operators ($lte, $in, $or, etc.) are translated to SQL WHERE clauses
  - Cursors support .sort(), .limit() and .skip()
  - Read-modify-write operations run under a per-database lock, so a
    conditional update such as {"_id": x, "status": "pending"} behaves
    like an atomic compare-and-set within the process

Datetimes are stored as UTC ISO-8601 strings with fixed microsecond
precision, which keeps lexicographic comparisons in SQL consistent with
chronological order.

Usage:
    db = get_database()
    job = await db.scheduled_jobs.find_one({"status": "pending"})
    await db.notifications.insert_one({"userId": "123", "title": "hello"})
"""

import asyncio
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

logger = logging.getLogger(__name__)

# Top-level keys converted back to datetime objects when read
DATE_KEYS = (
    "createdAt", "updatedAt", "scheduledAt", "sentAt", "readAt",
    "deliveredAt", "scheduledDateTime",
)


# ============================================================
# ObjectId replacement: generates MongoDB-style hex IDs
# ============================================================

class ObjectId:
    """MongoDB ObjectId replacement using UUID hex strings.

    Generates 24-character hex strings that look like MongoDB ObjectIds.
    Accepts existing ID strings for lookups.
    """

    def __init__(self, oid: Optional[str] = None):
        if oid:
            self._id = str(oid)
        else:
            self._id = uuid.uuid4().hex[:24]

    def __str__(self) -> str:
        return self._id

    def __repr__(self) -> str:
        return f"ObjectId('{self._id}')"

    def __eq__(self, other) -> bool:
        if isinstance(other, ObjectId):
            return self._id == other._id
        if isinstance(other, str):
            return self._id == other
        return False

    def __hash__(self) -> int:
        return hash(self._id)


# ============================================================
# Serialization
# ============================================================

def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to timezone-aware UTC (naive means UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _serialize_value(val: Any) -> Any:
    """Serialize a Python value for JSON storage."""
    if isinstance(val, datetime):
        return to_utc(val).isoformat(timespec="microseconds")
    if isinstance(val, ObjectId):
        return str(val)
    if isinstance(val, (list, tuple)):
        return [_serialize_value(v) for v in val]
    if isinstance(val, dict):
        return {k: _serialize_value(v) for k, v in val.items()}
    return val


def _deserialize_doc(doc_json: str) -> Dict[str, Any]:
    """Deserialize a JSON document, converting ISO dates back to datetime."""
    doc = json.loads(doc_json)
    for key in DATE_KEYS:
        if key in doc and doc[key] and isinstance(doc[key], str):
            try:
                doc[key] = to_utc(datetime.fromisoformat(doc[key]))
            except ValueError:
                pass
    return doc


# ============================================================
# Query translator: MongoDB query operators → SQL
# ============================================================

def _build_where(query: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """Translate a MongoDB query dict to SQL WHERE clause + params.

    Supports: exact match, $gt, $gte, $lt, $lte, $ne, $in, $nin,
    $exists, $or, $and, nested dot notation.

    Args:
        query: MongoDB-style query dict.

    Returns:
        (where_clause, params); the clause does NOT include 'WHERE' keyword.
    """
    if not query:
        return "1=1", []

    conditions = []
    params: List[Any] = []

    for key, value in query.items():
        if key == "$or":
            or_parts = []
            for sub_query in value:
                sub_where, sub_params = _build_where(sub_query)
                or_parts.append(f"({sub_where})")
                params.extend(sub_params)
            conditions.append(f"({' OR '.join(or_parts)})" if or_parts else "0")

        elif key == "$and":
            for sub_query in value:
                sub_where, sub_params = _build_where(sub_query)
                conditions.append(f"({sub_where})")
                params.extend(sub_params)

        elif key == "_id":
            if isinstance(value, dict):
                for op, op_val in value.items():
                    if op == "$in":
                        if op_val:
                            placeholders = ",".join("?" for _ in op_val)
                            conditions.append(f"_id IN ({placeholders})")
                            params.extend(str(v) for v in op_val)
                        else:
                            conditions.append("0")
                    elif op == "$ne":
                        conditions.append("_id != ?")
                        params.append(str(op_val))
                    else:
                        raise ValueError(f"Unsupported _id operator: {op}")
            else:
                conditions.append("_id = ?")
                params.append(str(value))

        elif isinstance(value, dict) and any(k.startswith("$") for k in value):
            json_path = _json_extract(key)
            for op, op_val in value.items():
                if op in _COMPARISON_OPS:
                    conditions.append(f"{json_path} {_COMPARISON_OPS[op]} ?")
                    params.append(_param(op_val))
                elif op == "$ne":
                    if op_val is None:
                        conditions.append(f"{json_path} IS NOT NULL")
                    else:
                        conditions.append(f"({json_path} IS NULL OR {json_path} != ?)")
                        params.append(_param(op_val))
                elif op == "$in":
                    if op_val:
                        placeholders = ",".join("?" for _ in op_val)
                        conditions.append(f"{json_path} IN ({placeholders})")
                        params.extend(_param(v) for v in op_val)
                    else:
                        conditions.append("0")  # Empty $in matches nothing
                elif op == "$nin":
                    if op_val:
                        placeholders = ",".join("?" for _ in op_val)
                        conditions.append(
                            f"({json_path} IS NULL OR {json_path} NOT IN ({placeholders}))"
                        )
                        params.extend(_param(v) for v in op_val)
                elif op == "$exists":
                    if op_val:
                        conditions.append(f"{json_path} IS NOT NULL")
                    else:
                        conditions.append(f"{json_path} IS NULL")
                else:
                    raise ValueError(f"Unsupported query operator: {op}")

        elif value is None:
            conditions.append(f"{_json_extract(key)} IS NULL")

        else:
            conditions.append(f"{_json_extract(key)} = ?")
            params.append(_param(value))

    return " AND ".join(conditions) if conditions else "1=1", params


_COMPARISON_OPS = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}


def _param(value: Any) -> Any:
    """Convert a query operand to the value json_extract returns."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, Enum):
        return value.value
    return _serialize_value(value)


def _json_extract(field: str) -> str:
    """Build a SQLite json_extract expression for a field path.

    Handles dot notation: 'data.userId' → json_extract(data, '$.data.userId')
    Sanitizes field name to prevent SQL injection via crafted field paths.
    """
    sanitized = re.sub(r"[^a-zA-Z0-9._\-]", "", field)
    return f"json_extract(data, '$.{sanitized}')"


def _build_sort(sort_spec) -> str:
    """Translate MongoDB sort spec to SQL ORDER BY.

    Accepts:
      - String: "field" (ascending)
      - Tuple: ("field", 1) or ("field", -1)
      - List of tuples: [("field1", 1), ("field2", -1)]
    """
    if not sort_spec:
        return ""

    if isinstance(sort_spec, str):
        return f"ORDER BY {_json_extract(sort_spec)} ASC"

    if isinstance(sort_spec, tuple) and len(sort_spec) == 2:
        sort_spec = [sort_spec]

    parts = []
    for field, direction in sort_spec:
        d = "DESC" if direction == -1 else "ASC"
        parts.append(f"{_json_extract(field)} {d}")
    # rowid keeps insertion order stable for equal keys
    last = "DESC" if sort_spec[-1][1] == -1 else "ASC"
    parts.append(f"rowid {last}")
    return "ORDER BY " + ", ".join(parts)


def _apply_update(doc: Dict, update: Dict, inserting: bool = False) -> Dict:
    """Apply MongoDB update operators to a document in-memory.

    Supports: $set, $unset, $inc, and $setOnInsert (only when inserting).
    If no operators are present, treats the update as a replacement.
    """
    has_operators = any(k.startswith("$") for k in update)

    if not has_operators:
        # Full replacement (preserve _id)
        _id = doc.get("_id")
        doc = dict(update)
        if _id:
            doc["_id"] = _id
        return doc

    for op, fields in update.items():
        if op == "$set":
            for k, v in fields.items():
                _set_nested(doc, k, _serialize_value(v))
        elif op == "$setOnInsert":
            if inserting:
                for k, v in fields.items():
                    _set_nested(doc, k, _serialize_value(v))
        elif op == "$unset":
            for k in fields:
                parts = k.split(".")
                target = doc
                for p in parts[:-1]:
                    target = target.get(p, {})
                target.pop(parts[-1], None)
        elif op == "$inc":
            for k, v in fields.items():
                doc[k] = doc.get(k, 0) + v
        else:
            raise ValueError(f"Unsupported update operator: {op}")

    return doc


def _set_nested(doc: Dict, key: str, value: Any) -> None:
    """Set a nested field using dot notation: 'a.b.c' → doc['a']['b']['c'] = value."""
    parts = key.split(".")
    target = doc
    for p in parts[:-1]:
        if p not in target or not isinstance(target[p], dict):
            target[p] = {}
        target = target[p]
    target[parts[-1]] = value


def _plain_fields(query: Dict) -> Dict:
    """Equality fields of a query, used to seed an upserted document."""
    return {
        k: v for k, v in query.items()
        if not k.startswith("$") and not isinstance(v, dict)
    }


# ============================================================
# Cursor: lazy query over a collection
# ============================================================

class SQLiteCursor:
    """Async cursor that mimics Motor's cursor with sort/limit/skip.

    Lazily executes the query when to_list() is called.
    """

    def __init__(self, collection: "SQLiteCollection", query: Dict):
        self._collection = collection
        self._query = query
        self._sort_spec = None
        self._limit_val = 0
        self._skip_val = 0
        self._results: Optional[List[Dict]] = None

    def sort(self, key_or_list, direction=None) -> "SQLiteCursor":
        """Set sort order. Accepts MongoDB-style sort specs."""
        if direction is not None:
            self._sort_spec = [(key_or_list, direction)]
        elif isinstance(key_or_list, str):
            self._sort_spec = [(key_or_list, 1)]
        elif isinstance(key_or_list, list):
            self._sort_spec = key_or_list
        return self

    def limit(self, count: int) -> "SQLiteCursor":
        """Limit the number of results."""
        self._limit_val = count
        return self

    def skip(self, count: int) -> "SQLiteCursor":
        """Skip the first N results."""
        self._skip_val = count
        return self

    async def _execute(self) -> List[Dict]:
        """Execute the query and return results."""
        if self._results is not None:
            return self._results

        await self._collection._ensure_table()
        where, params = _build_where(self._query)
        order = _build_sort(self._sort_spec) if self._sort_spec else ""

        sql = f"SELECT _id, data FROM [{self._collection.name}] WHERE {where} {order}"
        if self._limit_val > 0:
            sql += f" LIMIT {int(self._limit_val)}"
            if self._skip_val > 0:
                sql += f" OFFSET {int(self._skip_val)}"
        elif self._skip_val > 0:
            sql += f" LIMIT -1 OFFSET {int(self._skip_val)}"

        results = []
        async with self._collection._db._get_conn() as conn:
            async with conn.execute(sql, params) as cursor:
                async for row in cursor:
                    doc = _deserialize_doc(row[1])
                    doc["_id"] = row[0]
                    results.append(doc)

        self._results = results
        return results

    async def to_list(self, length: Optional[int] = None) -> List[Dict]:
        """Execute and return results as a list."""
        results = await self._execute()
        if length:
            return results[:length]
        return results


# ============================================================
# Collection: mimics Motor's AsyncIOMotorCollection
# ============================================================

class SQLiteCollection:
    """Async SQLite collection that mimics Motor's MongoDB collection API.

    Each collection is a SQLite table with columns:
      - _id TEXT PRIMARY KEY
      - data TEXT (JSON document)
    """

    def __init__(self, db: "SQLiteDatabase", name: str):
        self._db = db
        self.name = name
        self._table_ready = False

    async def _ensure_table(self) -> None:
        """Create the table if it doesn't exist."""
        if self._table_ready:
            return
        async with self._db._get_conn() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS [{self.name}] (
                    _id TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
            """)
            await conn.commit()
        self._table_ready = True

    async def _insert(self, conn: aiosqlite.Connection, document: Dict) -> str:
        doc = dict(document)
        _id = doc.pop("_id", None)
        if _id is None:
            _id = ObjectId()
        _id = str(_id)
        await conn.execute(
            f"INSERT INTO [{self.name}] (_id, data) VALUES (?, ?)",
            (_id, json.dumps(_serialize_value(doc), default=str)),
        )
        return _id

    async def _replace(self, conn: aiosqlite.Connection, _id: str, doc: Dict) -> None:
        await conn.execute(
            f"UPDATE [{self.name}] SET data = ? WHERE _id = ?",
            (json.dumps(_serialize_value(doc), default=str), _id),
        )

    async def insert_one(self, document: Dict) -> "InsertOneResult":
        """Insert a single document."""
        await self._ensure_table()
        async with self._db._get_conn() as conn:
            _id = await self._insert(conn, document)
            await conn.commit()
        return InsertOneResult(_id)

    async def insert_many(self, documents: List[Dict]) -> "InsertManyResult":
        """Insert multiple documents."""
        await self._ensure_table()
        ids = []
        async with self._db._get_conn() as conn:
            for doc in documents:
                ids.append(await self._insert(conn, doc))
            await conn.commit()
        return InsertManyResult(ids)

    async def find_one(self, query: Optional[Dict] = None,
                       sort: Optional[list] = None) -> Optional[Dict]:
        """Find a single document matching the query.

        Args:
            query: MongoDB-style query dict.
            sort: Optional sort spec for picking which doc to return.
        """
        await self._ensure_table()
        where, params = _build_where(query or {})
        order = _build_sort(sort) if sort else ""
        sql = f"SELECT _id, data FROM [{self.name}] WHERE {where} {order} LIMIT 1"

        async with self._db._get_conn() as conn:
            async with conn.execute(sql, params) as cursor:
                row = await cursor.fetchone()
                if row:
                    doc = _deserialize_doc(row[1])
                    doc["_id"] = row[0]
                    return doc
        return None

    def find(self, query: Optional[Dict] = None) -> SQLiteCursor:
        """Return a cursor for documents matching the query."""
        return SQLiteCursor(self, query or {})

    async def update_one(self, query: Dict, update: Dict,
                         upsert: bool = False) -> "UpdateResult":
        """Update a single document.

        The lookup and the write happen under the database write lock,
        so the query acts as a guard: a concurrent caller whose guard no
        longer matches sees matched_count == 0.
        """
        await self._ensure_table()
        async with self._db._write_lock:
            doc = await self.find_one(query)

            if doc is None:
                if not upsert:
                    return UpdateResult(0, 0)
                new_doc = _apply_update(_plain_fields(query), update, inserting=True)
                async with self._db._get_conn() as conn:
                    _id = await self._insert(conn, new_doc)
                    await conn.commit()
                return UpdateResult(0, 0, _id)

            _id = doc.pop("_id")
            updated = _apply_update(doc, update)
            async with self._db._get_conn() as conn:
                await self._replace(conn, _id, updated)
                await conn.commit()

        return UpdateResult(1, 1)

    async def update_many(self, query: Dict, update: Dict) -> "UpdateResult":
        """Update all documents matching the query."""
        await self._ensure_table()
        async with self._db._write_lock:
            docs = await SQLiteCursor(self, query).to_list()
            async with self._db._get_conn() as conn:
                for doc in docs:
                    _id = doc.pop("_id")
                    await self._replace(conn, _id, _apply_update(doc, update))
                await conn.commit()

        return UpdateResult(len(docs), len(docs))

    async def find_one_and_update(self, query: Dict, update: Dict,
                                  return_document: bool = False,
                                  upsert: bool = False) -> Optional[Dict]:
        """Find a document, update it, and return it.

        Args:
            return_document: If True, return the updated document.
                           If False, return the original (pre-update).
        """
        await self._ensure_table()
        async with self._db._write_lock:
            doc = await self.find_one(query)

            if doc is None:
                if not upsert:
                    return None
                new_doc = _apply_update(_plain_fields(query), update, inserting=True)
                async with self._db._get_conn() as conn:
                    _id = await self._insert(conn, new_doc)
                    await conn.commit()
                return await self.find_one({"_id": _id}) if return_document else None

            original = dict(doc)
            _id = doc.pop("_id")
            updated = _apply_update(doc, update)
            async with self._db._get_conn() as conn:
                await self._replace(conn, _id, updated)
                await conn.commit()

        if return_document:
            return await self.find_one({"_id": _id})
        return original

    async def delete_many(self, query: Dict) -> "DeleteResult":
        """Delete all documents matching the query."""
        await self._ensure_table()
        where, params = _build_where(query)

        async with self._db._write_lock:
            async with self._db._get_conn() as conn:
                cursor = await conn.execute(
                    f"DELETE FROM [{self.name}] WHERE {where}", params
                )
                await conn.commit()
                return DeleteResult(cursor.rowcount)

    async def count_documents(self, query: Optional[Dict] = None) -> int:
        """Count documents matching the query."""
        await self._ensure_table()
        where, params = _build_where(query or {})
        sql = f"SELECT COUNT(*) FROM [{self.name}] WHERE {where}"

        async with self._db._get_conn() as conn:
            async with conn.execute(sql, params) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def aggregate(self, pipeline: List[Dict]) -> List[Dict]:
        """Basic aggregation support.

        Supports a subset of MongoDB aggregation: $match, $group (with
        $sum), $sort and $limit. A leading $match is pushed down to SQL.
        """
        stages = list(pipeline)
        query: Dict = {}
        if stages and "$match" in stages[0]:
            query = stages.pop(0)["$match"]
        docs = await self.find(query).to_list()

        for stage in stages:
            if "$match" in stage:
                docs = [d for d in docs if _doc_matches(d, stage["$match"])]

            elif "$sort" in stage:
                for field, direction in reversed(list(stage["$sort"].items())):
                    docs.sort(
                        key=lambda d: (d.get(field) is None, d.get(field)),
                        reverse=(direction == -1),
                    )

            elif "$limit" in stage:
                docs = docs[:stage["$limit"]]

            elif "$group" in stage:
                groups: Dict[Any, Dict] = {}
                group_spec = stage["$group"]
                id_spec = group_spec["_id"]

                for doc in docs:
                    if isinstance(id_spec, str) and id_spec.startswith("$"):
                        key = doc.get(id_spec[1:])
                    else:
                        key = id_spec

                    if key not in groups:
                        groups[key] = {"_id": key}

                    for out_field, acc in group_spec.items():
                        if out_field == "_id":
                            continue
                        if not isinstance(acc, dict) or "$sum" not in acc:
                            raise ValueError(f"Unsupported accumulator: {acc}")
                        val = acc["$sum"]
                        if isinstance(val, str) and val.startswith("$"):
                            inc = doc.get(val[1:], 0) or 0
                        else:
                            inc = val
                        groups[key][out_field] = groups[key].get(out_field, 0) + inc

                docs = list(groups.values())

            else:
                raise ValueError(f"Unsupported aggregation stage: {list(stage)}")

        return docs


def _doc_matches(doc: Dict, query: Dict) -> bool:
    """Check if a document matches a simple MongoDB query (in-memory)."""
    for key, value in query.items():
        if key == "$or":
            if not any(_doc_matches(doc, sub) for sub in value):
                return False
        elif key == "$and":
            if not all(_doc_matches(doc, sub) for sub in value):
                return False
        elif isinstance(value, dict) and any(k.startswith("$") for k in value):
            doc_val = doc.get(key)
            for op, op_val in value.items():
                if op == "$gt" and not (doc_val is not None and doc_val > op_val):
                    return False
                elif op == "$gte" and not (doc_val is not None and doc_val >= op_val):
                    return False
                elif op == "$lt" and not (doc_val is not None and doc_val < op_val):
                    return False
                elif op == "$lte" and not (doc_val is not None and doc_val <= op_val):
                    return False
                elif op == "$ne" and doc_val == op_val:
                    return False
                elif op == "$in" and doc_val not in op_val:
                    return False
                elif op == "$exists" and bool(op_val) != (doc_val is not None):
                    return False
        elif doc.get(key) != value:
            return False
    return True


# ============================================================
# Result types: mimic Motor/PyMongo result objects
# ============================================================

class InsertOneResult:
    def __init__(self, inserted_id: str):
        self.inserted_id = inserted_id


class InsertManyResult:
    def __init__(self, inserted_ids: List[str]):
        self.inserted_ids = inserted_ids


class UpdateResult:
    def __init__(self, matched_count: int, modified_count: int,
                 upserted_id: Optional[str] = None):
        self.matched_count = matched_count
        self.modified_count = modified_count
        self.upserted_id = upserted_id


class DeleteResult:
    def __init__(self, deleted_count: int):
        self.deleted_count = deleted_count


# ============================================================
# Database: mimics Motor's AsyncIOMotorDatabase
# ============================================================

class SQLiteDatabase:
    """Async SQLite database that mimics Motor's MongoDB database API.

    Collections are accessed as attributes: db.notifications,
    db.scheduled_jobs, etc. Each collection becomes a table.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._collections: Dict[str, SQLiteCollection] = {}
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the SQLite connection."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path, timeout=30.0)
        # WAL lets the CLI runner read while the API process writes
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA busy_timeout=5000")
        logger.info(f"SQLite database connected: {self._db_path}")

    async def close(self) -> None:
        """Close the SQLite connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("SQLite database closed")

    def _get_conn(self):
        """Get the connection (context manager compatible)."""
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return _ConnContext(self._conn)

    async def command(self, cmd: str) -> Dict:
        """Mimic MongoDB admin commands (ping)."""
        if cmd == "ping":
            async with self._get_conn() as conn:
                await conn.execute("SELECT 1")
        return {"ok": 1}

    def __getattr__(self, name: str) -> SQLiteCollection:
        """Access collections as attributes: db.notifications, etc."""
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name: str) -> SQLiteCollection:
        """Access collections as items: db['notifications']."""
        if name not in self._collections:
            self._collections[name] = SQLiteCollection(self, name)
        return self._collections[name]


class _ConnContext:
    """Async context manager wrapper for the shared connection."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def __aenter__(self) -> aiosqlite.Connection:
        return self._conn

    async def __aexit__(self, *args):
        pass  # Connection stays open: managed by SQLiteDatabase
