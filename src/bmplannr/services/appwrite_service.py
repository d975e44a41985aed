from typing import Dict, List, Mapping, Optional

from appwrite.client import Client
from appwrite.exception import AppwriteException
from appwrite.id import ID
from appwrite.query import Query
from appwrite.services.databases import Databases

from bmplannr.app_logger import get_logger
from bmplannr.config.settings import settings
from bmplannr.services.store import GRADES, SCHEDULED_TESTS, SETTINGS, StoreError

logger = get_logger("appwrite")


class AppwriteServiceError(StoreError):
    pass


class AppwriteStore:
    """RecordStore over Appwrite Databases; one Appwrite collection per store collection."""

    def __init__(
        self,
        endpoint: str,
        project_id: str,
        api_key: str,
        database_id: str,
        grades_collection_id: str,
        settings_collection_id: str,
        tests_collection_id: str,
        db: Optional[Databases] = None,
    ) -> None:
        if not endpoint:
            raise AppwriteServiceError("Missing APPWRITE_ENDPOINT in environment")
        if not project_id:
            raise AppwriteServiceError("Missing APPWRITE_PROJECT_ID in environment")
        if not api_key:
            raise AppwriteServiceError("Missing APPWRITE_API_KEY in environment")
        if not database_id:
            raise AppwriteServiceError("Missing APPWRITE_DATABASE_ID in environment")

        self.database_id = database_id
        self.collection_ids = {
            GRADES: grades_collection_id,
            SETTINGS: settings_collection_id,
            SCHEDULED_TESTS: tests_collection_id,
        }

        if db is None:
            client = Client()
            client.set_endpoint(endpoint.rstrip("/"))
            client.set_project(project_id)
            client.set_key(api_key)
            db = Databases(client)
        self.db = db

    @classmethod
    def from_settings(cls) -> "AppwriteStore":
        return cls(
            endpoint=settings.appwrite_endpoint,
            project_id=settings.appwrite_project_id,
            api_key=settings.appwrite_api_key,
            database_id=settings.appwrite_database_id,
            grades_collection_id=settings.appwrite_grades_collection_id,
            settings_collection_id=settings.appwrite_settings_collection_id,
            tests_collection_id=settings.appwrite_tests_collection_id,
        )

    def _collection_id(self, collection: str) -> str:
        try:
            return self.collection_ids[collection]
        except KeyError as exc:
            raise AppwriteServiceError(f"Unknown collection: {collection}") from exc

    @staticmethod
    def _to_record(doc: Mapping) -> Dict:
        row = {key: value for key, value in doc.items() if not key.startswith("$")}
        row["id"] = doc["$id"]
        row.setdefault("created_at", doc.get("$createdAt"))
        row.setdefault("updated_at", doc.get("$updatedAt"))
        return row

    @staticmethod
    def _payload(data: Mapping) -> Dict:
        return {key: value for key, value in data.items() if key != "id" and value is not None}

    def _fail(self, action: str, collection: str, exc: AppwriteException) -> AppwriteServiceError:
        logger.exception("Appwrite %s on %s failed", action, collection)
        return AppwriteServiceError(str(exc))

    def insert(self, collection: str, data: Mapping) -> Dict:
        payload = self._payload(data)
        try:
            doc = self.db.create_document(
                self.database_id,
                self._collection_id(collection),
                data.get("id") or ID.unique(),
                payload,
            )
        except AppwriteException as exc:
            raise self._fail("insert", collection, exc) from exc
        return self._to_record(doc)

    def get(self, collection: str, record_id: str) -> Optional[Dict]:
        try:
            doc = self.db.get_document(self.database_id, self._collection_id(collection), record_id)
        except AppwriteException as exc:
            if getattr(exc, "code", None) == 404:
                return None
            raise self._fail("get", collection, exc) from exc
        return self._to_record(doc)

    def query(self, collection: str, filters: Mapping, order_by: Optional[str] = None) -> List[Dict]:
        queries = [Query.equal("$id" if key == "id" else key, [value]) for key, value in filters.items()]
        if order_by:
            queries.append(Query.order_asc(order_by))
        try:
            result = self.db.list_documents(self.database_id, self._collection_id(collection), queries=queries)
        except AppwriteException as exc:
            raise self._fail("query", collection, exc) from exc
        return [self._to_record(doc) for doc in result.get("documents", [])]

    def update(self, collection: str, record_id: str, partial: Mapping) -> Dict:
        changes = {key: value for key, value in partial.items() if key != "id"}
        try:
            doc = self.db.update_document(self.database_id, self._collection_id(collection), record_id, changes)
        except AppwriteException as exc:
            raise self._fail("update", collection, exc) from exc
        return self._to_record(doc)

    def delete(self, collection: str, record_id: str) -> None:
        try:
            self.db.delete_document(self.database_id, self._collection_id(collection), record_id)
        except AppwriteException as exc:
            if getattr(exc, "code", None) == 404:
                return
            raise self._fail("delete", collection, exc) from exc

    def upsert(self, collection: str, data: Mapping, conflict_key: str) -> Dict:
        if conflict_key not in data:
            raise AppwriteServiceError(f"Upsert requires a value for {conflict_key}")
        existing = self.query(collection, {conflict_key: data[conflict_key]})
        if existing:
            return self.update(collection, existing[0]["id"], data)
        return self.insert(collection, data)
