# Entity models: the canonical identity behind every node.
from typing import Literal, Optional, get_args

from pydantic import BaseModel

from models.registry import Role


EntityType = Literal["human", "company", "organization"]
ENTITY_TYPES = frozenset(get_args(EntityType))


class Entity(BaseModel):
    id: str
    name: str
    role_id: str
    entity_type: EntityType = "human"
    description: Optional[str] = None
    avatar: Optional[str] = None
    # Joined role row, present on reads
    role: Optional[Role] = None


class EntityCreateRequest(BaseModel):
    name: str
    role_id: str
    entity_type: Optional[str] = None
    description: Optional[str] = None


class EntityUpdateRequest(BaseModel):
    name: Optional[str] = None
    role_id: Optional[str] = None
    entity_type: Optional[str] = None
    description: Optional[str] = None


class EntitySearchResult(BaseModel):
    entity: Entity
    in_current_graph: bool = False
