"""
In-memory stand-in for a motor collection.

Supports the subset of the query/update language the quota ledger uses
(equality, $gt/$gte filters, $set/$inc updates). Every call yields to the
event loop before touching data, so concurrent callers interleave the way
they would against a real server, while each individual operation stays
atomic.
"""

import asyncio
import copy
from types import SimpleNamespace

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError


def _matches(doc, query):
    for key, condition in query.items():
        value = doc.get(key)
        if isinstance(condition, dict):
            for op, operand in condition.items():
                if op == "$gt" and not (value is not None and value > operand):
                    return False
                if op == "$gte" and not (value is not None and value >= operand):
                    return False
        elif value != condition:
            return False
    return True


def _project(doc, projection):
    result = copy.deepcopy(doc)
    if projection and projection.get("_id") == 0:
        result.pop("_id", None)
    return result


class FakeCollection:
    def __init__(self, unique_keys=("user_id",)):
        self.docs = []
        self.unique_keys = unique_keys
        self.indexes = []
        self.error = None  # raised by every operation when set
        self.calls = []

    async def _enter(self, name):
        self.calls.append(name)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error

    async def find_one(self, query, projection=None):
        await self._enter("find_one")
        for doc in self.docs:
            if _matches(doc, query):
                return _project(doc, projection)
        return None

    async def insert_one(self, doc):
        await self._enter("insert_one")
        for key in self.unique_keys:
            if any(existing.get(key) == doc.get(key) for existing in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key error dup key: {{ {key}: {doc.get(key)!r} }}", 11000)
        stored = copy.deepcopy(doc)
        stored["_id"] = len(self.docs) + 1
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    async def find_one_and_update(self, query, update, projection=None, return_document=ReturnDocument.BEFORE):
        await self._enter("find_one_and_update")
        for doc in self.docs:
            if not _matches(doc, query):
                continue
            before = _project(doc, projection)
            for key, value in update.get("$set", {}).items():
                doc[key] = value
            for key, value in update.get("$inc", {}).items():
                doc[key] = doc.get(key, 0) + value
            return _project(doc, projection) if return_document == ReturnDocument.AFTER else before
        return None

    async def create_index(self, keys, **options):
        await self._enter("create_index")
        self.indexes.append((keys, options))
        return options.get("name")

    def balance_of(self, user_id):
        for doc in self.docs:
            if doc.get("user_id") == user_id:
                return doc["balance"]
        return None


class FakeDatabase(dict):
    """Dict of collection name -> FakeCollection, created on first access."""

    def __missing__(self, name):
        collection = FakeCollection()
        self[name] = collection
        return collection
