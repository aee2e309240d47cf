from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field

# Storage order: [longitude, latitude]
Coordinate = List[float]

class FeatureKind(str, Enum):
    PIPELINE = "pipeline"
    ZONE = "zone"
    MARKER = "marker"

class EditState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"

class GeometryValidationError(str, Enum):
    INSUFFICIENT_VERTICES = "insufficient_vertices"
    SELF_INTERSECTION = "self_intersection"
    INVALID_COORDINATES = "invalid_coordinates"
    TOPOLOGY_ERROR = "topology_error"

class Point(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., description="Single [lng, lat] pair")

class LineString(BaseModel):
    type: Literal["LineString"] = "LineString"
    coordinates: List[Coordinate] = Field(..., description="Sequence of [lng, lat] pairs")

class Polygon(BaseModel):
    type: Literal["Polygon"] = "Polygon"
    coordinates: List[List[Coordinate]] = Field(..., description="Linear rings; index 0 is the exterior ring")

Geometry = Annotated[Union[Point, LineString, Polygon], Field(discriminator="type")]

# Geometry variant each feature kind is stored with
KIND_GEOMETRY = {
    FeatureKind.PIPELINE: "LineString",
    FeatureKind.ZONE: "Polygon",
    FeatureKind.MARKER: "Point",
}

class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[GeometryValidationError] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

class VertexHandle(BaseModel):
    id: str = Field(..., description="Stable handle id, e.g. 'vertex-0'")
    position: List[float] = Field(..., description="Display order [lat, lng]")
    index: int = Field(..., description="Index into the owning coordinate sequence")
    is_dragging: bool = False

class PendingSave(BaseModel):
    feature_id: str
    feature_kind: FeatureKind
    geometry: Geometry
    created_at: datetime = Field(default_factory=datetime.now)
    retry_count: int = 0

class HealthResponse(BaseModel):
    status: str = Field(..., description="Operational status of the API", json_schema_extra={"example": "ok"})
    online: bool = Field(..., description="Current connectivity state seen by the auto-saver")
    pending_saves: int = Field(..., description="Number of queued geometry writes")

class EditSessionRequest(BaseModel):
    feature_kind: FeatureKind = Field(..., description="Kind of feature entering edit mode")
    geometry: Geometry = Field(..., description="Current committed geometry of the feature")

class MoveVertexRequest(BaseModel):
    index: int = Field(..., ge=0, description="Index into the coordinate sequence")
    position: List[float] = Field(..., min_length=2, max_length=2, description="New display position [lat, lng]")

class AddVertexRequest(BaseModel):
    position: List[float] = Field(..., min_length=2, max_length=2, description="Clicked display position [lat, lng]")

class ConnectivityRequest(BaseModel):
    online: bool

class EditSessionResponse(BaseModel):
    feature_id: str
    feature_kind: FeatureKind
    state: EditState
    geometry: Geometry
    handles: List[VertexHandle] = Field(default_factory=list)
    has_pending_changes: bool = False
    warnings: List[str] = Field(default_factory=list)

class PendingSaveResponse(BaseModel):
    feature_id: str
    feature_kind: FeatureKind
    retry_count: int
    created_at: datetime
    geometry: Optional[Geometry] = None
