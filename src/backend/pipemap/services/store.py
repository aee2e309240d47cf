import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from pipemap.core.database import get_db_connection
from pipemap.core.errors import NotFoundError, PersistenceError
from pipemap.core.logger import get_logger
from pipemap.gis_core.coordinates import parse_geometry, serialize_geometry
from pipemap.models import FeatureKind, Geometry

logger = get_logger(__name__)

ALLOWED_FIELDS = {"geometry", "name", "properties"}

def _clean_updates(updates: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: v for k, v in updates.items() if k in ALLOWED_FIELDS}
    if not fields:
        raise PersistenceError("Update payload has no writable fields")
    if "geometry" in fields and not isinstance(fields["geometry"], str):
        fields["geometry"] = serialize_geometry(parse_geometry(fields["geometry"]))
    if "properties" in fields and not isinstance(fields["properties"], str):
        fields["properties"] = json.dumps(fields["properties"], ensure_ascii=False)
    return fields

class InMemoryFeatureStore:
    """Dictionary-backed store for demos and tests. Documents keep geometry as JSON text."""

    def __init__(self):
        self._docs: Dict[Tuple[FeatureKind, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def add(self, kind: FeatureKind, feature_id: str, geometry: Geometry, name: Optional[str] = None) -> None:
        with self._lock:
            self._docs[(FeatureKind(kind), feature_id)] = {
                "id": feature_id,
                "name": name,
                "geometry": serialize_geometry(geometry),
                "version": 1,
            }

    def get(self, kind: FeatureKind, feature_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get((FeatureKind(kind), feature_id))
            return dict(doc) if doc else None

    def get_geometry(self, kind: FeatureKind, feature_id: str) -> Optional[Geometry]:
        doc = self.get(kind, feature_id)
        return parse_geometry(doc["geometry"]) if doc else None

    def _update(self, kind: FeatureKind, feature_id: str, updates: Dict[str, Any]) -> None:
        if not feature_id:
            raise PersistenceError(f"{kind.value.capitalize()} ID is required for update")
        fields = _clean_updates(updates)
        with self._lock:
            doc = self._docs.get((kind, feature_id))
            if doc is None:
                raise NotFoundError(f"{kind.value.capitalize()} not found. It may have been deleted.")
            doc.update(fields)
            doc["version"] += 1

    def update_pipeline(self, feature_id: str, updates: Dict[str, Any]) -> None:
        self._update(FeatureKind.PIPELINE, feature_id, updates)

    def update_zone(self, feature_id: str, updates: Dict[str, Any]) -> None:
        self._update(FeatureKind.ZONE, feature_id, updates)

    def update_marker(self, feature_id: str, updates: Dict[str, Any]) -> None:
        self._update(FeatureKind.MARKER, feature_id, updates)

class SqliteFeatureStore:
    """Local document table; last write wins."""

    def __init__(self, db_path: Optional[Path] = None):
        self.conn = get_db_connection(db_path)
        self._lock = threading.Lock()

    def close(self) -> None:
        self.conn.close()

    def add(self, kind: FeatureKind, feature_id: str, geometry: Geometry,
            name: Optional[str] = None, properties: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO features (kind, feature_id, name, geometry, properties) VALUES (?, ?, ?, ?, ?)",
                (FeatureKind(kind).value, feature_id, name, serialize_geometry(geometry),
                 json.dumps(properties or {}, ensure_ascii=False)),
            )
            self.conn.commit()

    def get(self, kind: FeatureKind, feature_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute(
                "SELECT feature_id, name, geometry, properties, version, updated_at "
                "FROM features WHERE kind = ? AND feature_id = ?",
                (FeatureKind(kind).value, feature_id),
            ).fetchone()

        if not row:
            return None
        return {
            "id": row[0],
            "name": row[1],
            "geometry": row[2],
            "properties": json.loads(row[3] or "{}"),
            "version": row[4],
            "updated_at": row[5],
        }

    def get_geometry(self, kind: FeatureKind, feature_id: str) -> Optional[Geometry]:
        doc = self.get(kind, feature_id)
        return parse_geometry(doc["geometry"]) if doc else None

    def list_ids(self, kind: FeatureKind) -> List[str]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT feature_id FROM features WHERE kind = ? ORDER BY feature_id",
                (FeatureKind(kind).value,),
            ).fetchall()
        return [r[0] for r in rows]

    def _update(self, kind: FeatureKind, feature_id: str, updates: Dict[str, Any]) -> None:
        if not feature_id:
            raise PersistenceError(f"{kind.value.capitalize()} ID is required for update")
        fields = _clean_updates(updates)

        # Field names come from ALLOWED_FIELDS only
        set_clause = ", ".join(f"{k} = ?" for k in fields.keys())
        sql = (f"UPDATE features SET {set_clause}, version = version + 1, updated_at = CURRENT_TIMESTAMP "
               "WHERE kind = ? AND feature_id = ?")
        params = list(fields.values()) + [kind.value, feature_id]

        with self._lock:
            try:
                cursor = self.conn.execute(sql, params)
                self.conn.commit()
            except sqlite3.Error as e:
                logger.error("feature_update_failed", kind=kind.value, feature_id=feature_id, error=str(e))
                raise PersistenceError(f"Failed to update {kind.value}: {e}") from e

        if cursor.rowcount == 0:
            raise NotFoundError(f"{kind.value.capitalize()} not found. It may have been deleted.")

    def update_pipeline(self, feature_id: str, updates: Dict[str, Any]) -> None:
        self._update(FeatureKind.PIPELINE, feature_id, updates)

    def update_zone(self, feature_id: str, updates: Dict[str, Any]) -> None:
        self._update(FeatureKind.ZONE, feature_id, updates)

    def update_marker(self, feature_id: str, updates: Dict[str, Any]) -> None:
        self._update(FeatureKind.MARKER, feature_id, updates)
