"""
Document store used by every service.

All operations are async and return tuples instead of raising:
    create_document  -> (success, document_id, error)
    get_document     -> (success, document, error)
    update_document  -> (success, error)
    delete_document  -> (success, error)
    query_documents  -> (success, documents, error)

Filters are (field, op, value) triples. Two implementations share the
interface: an in-memory map-of-maps used by tests and local runs, and a
Cloud Firestore backed one for deployments.
"""

import copy
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Filter = Tuple[str, str, Any]

# Error value returned when the addressed document does not exist
DOCUMENT_NOT_FOUND = "not_found"

SUPPORTED_OPERATORS = {"==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array_contains"}

# Firestore spells some operators differently
FIRESTORE_OPERATORS = {"array_contains": "array-contains"}


class DatabaseService:
    """Interface shared by the store implementations"""

    async def create_document(self, collection: str, data: dict, document_id: Optional[str] = None) -> Tuple[bool, Optional[str], Optional[str]]:
        raise NotImplementedError

    async def get_document(self, collection: str, document_id: str) -> Tuple[bool, Optional[dict], Optional[str]]:
        raise NotImplementedError

    async def update_document(self, collection: str, document_id: str, data: dict) -> Tuple[bool, Optional[str]]:
        raise NotImplementedError

    async def delete_document(self, collection: str, document_id: str) -> Tuple[bool, Optional[str]]:
        raise NotImplementedError

    async def query_documents(self, collection: str, filters: Optional[List[Filter]] = None, limit: Optional[int] = None) -> Tuple[bool, List[dict], Optional[str]]:
        raise NotImplementedError


def _matches(doc: dict, field: str, op: str, value: Any) -> bool:
    current = doc.get(field)
    try:
        if op == "==":
            return current == value
        if op == "!=":
            return current != value
        if op == "in":
            return current in value
        if op == "not-in":
            return current not in value
        if op == "array_contains":
            return isinstance(current, (list, tuple)) and value in current
        if current is None:
            return False
        if op == "<":
            return current < value
        if op == "<=":
            return current <= value
        if op == ">":
            return current > value
        if op == ">=":
            return current >= value
    except TypeError:
        # Mixed types never match a range filter
        return False
    return False


class InMemoryDatabaseService(DatabaseService):
    """Reference implementation: collection -> document id -> document"""

    def __init__(self):
        self.storage: Dict[str, Dict[str, dict]] = {}

    async def create_document(self, collection, data, document_id=None):
        coll = self.storage.setdefault(collection, {})
        doc_id = document_id or data.get("id") or str(uuid.uuid4())
        if doc_id in coll:
            return False, None, f"Document {doc_id} already exists in {collection}"
        doc = copy.deepcopy(data)
        doc["id"] = doc_id
        coll[doc_id] = doc
        return True, doc_id, None

    async def get_document(self, collection, document_id):
        doc = self.storage.get(collection, {}).get(document_id)
        if doc is None:
            return False, None, DOCUMENT_NOT_FOUND
        return True, self._export(document_id, doc), None

    async def update_document(self, collection, document_id, data):
        coll = self.storage.get(collection, {})
        if document_id not in coll:
            return False, DOCUMENT_NOT_FOUND
        coll[document_id].update(copy.deepcopy(data))
        return True, None

    async def delete_document(self, collection, document_id):
        coll = self.storage.get(collection, {})
        if coll.pop(document_id, None) is None:
            return False, DOCUMENT_NOT_FOUND
        return True, None

    async def query_documents(self, collection, filters=None, limit=None):
        for _, op, _ in filters or []:
            if op not in SUPPORTED_OPERATORS:
                return False, [], f"Unsupported filter operator: {op}"

        results = []
        for doc_id, doc in self.storage.get(collection, {}).items():
            if all(_matches(doc, field, op, value) for field, op, value in filters or []):
                results.append(self._export(doc_id, doc))
                if limit and len(results) >= limit:
                    break
        return True, results, None

    @staticmethod
    def _export(doc_id: str, doc: dict) -> dict:
        exported = copy.deepcopy(doc)
        exported["_doc_id"] = doc_id
        return exported


class FirestoreDatabaseService(DatabaseService):
    """Cloud Firestore implementation on top of firebase-admin"""

    def __init__(self, client=None, settings=None):
        if client is None:
            from firebase_admin import firestore
            from ..core.firebase_init import initialize_firebase

            if not initialize_firebase(settings):
                raise RuntimeError("Firebase initialization failed - Firestore store not available")
            client = firestore.client()
        self.client = client

    async def create_document(self, collection, data, document_id=None):
        try:
            doc_id = document_id or data.get("id") or str(uuid.uuid4())
            payload = dict(data)
            payload["id"] = doc_id
            self.client.collection(collection).document(doc_id).create(payload)
            return True, doc_id, None
        except Exception as e:
            logger.error(f"Firestore create in {collection} failed: {e}")
            return False, None, str(e)

    async def get_document(self, collection, document_id):
        try:
            snapshot = self.client.collection(collection).document(document_id).get()
            if not snapshot.exists:
                return False, None, DOCUMENT_NOT_FOUND
            doc = snapshot.to_dict()
            doc["_doc_id"] = snapshot.id
            return True, doc, None
        except Exception as e:
            logger.error(f"Firestore get {collection}/{document_id} failed: {e}")
            return False, None, str(e)

    async def update_document(self, collection, document_id, data):
        try:
            ref = self.client.collection(collection).document(document_id)
            if not ref.get().exists:
                return False, DOCUMENT_NOT_FOUND
            ref.update(data)
            return True, None
        except Exception as e:
            logger.error(f"Firestore update {collection}/{document_id} failed: {e}")
            return False, str(e)

    async def delete_document(self, collection, document_id):
        try:
            self.client.collection(collection).document(document_id).delete()
            return True, None
        except Exception as e:
            logger.error(f"Firestore delete {collection}/{document_id} failed: {e}")
            return False, str(e)

    async def query_documents(self, collection, filters=None, limit=None):
        try:
            from google.cloud.firestore_v1 import FieldFilter

            query = self.client.collection(collection)
            for field, op, value in filters or []:
                if op not in SUPPORTED_OPERATORS:
                    return False, [], f"Unsupported filter operator: {op}"
                query = query.where(filter=FieldFilter(field, FIRESTORE_OPERATORS.get(op, op), value))
            if limit:
                query = query.limit(limit)

            documents = []
            for snapshot in query.stream():
                doc = snapshot.to_dict()
                doc["_doc_id"] = snapshot.id
                documents.append(doc)
            return True, documents, None
        except Exception as e:
            logger.error(f"Firestore query on {collection} failed: {e}")
            return False, [], str(e)
