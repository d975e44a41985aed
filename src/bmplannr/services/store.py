from typing import Dict, List, Mapping, Optional, Protocol


GRADES = "grades"
SETTINGS = "bm_settings"
SCHEDULED_TESTS = "scheduled_tests"

COLLECTIONS = (GRADES, SETTINGS, SCHEDULED_TESTS)


class StoreError(Exception):
    pass


class RecordStore(Protocol):
    """
    Per-collection CRUD over plain dict documents with snake_case keys.
    Every document returned carries its identity under "id".
    """

    def insert(self, collection: str, data: Mapping) -> Dict: ...

    def get(self, collection: str, record_id: str) -> Optional[Dict]: ...

    def query(self, collection: str, filters: Mapping, order_by: Optional[str] = None) -> List[Dict]: ...

    def update(self, collection: str, record_id: str, partial: Mapping) -> Dict: ...

    def delete(self, collection: str, record_id: str) -> None: ...

    def upsert(self, collection: str, data: Mapping, conflict_key: str) -> Dict: ...
