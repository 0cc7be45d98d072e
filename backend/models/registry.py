# Reference vocabularies: roles, relationship types, event types, tags.
from typing import Dict, List, Literal, Optional, get_args

from pydantic import BaseModel


RoleCategory = Literal[
    "official",
    "law_enforcement",
    "political",
    "witness",
    "suspect",
    "victim",
    "business",
    "civilian",
]
ROLE_CATEGORIES = frozenset(get_args(RoleCategory))


class Role(BaseModel):
    id: str
    name: str
    category: RoleCategory
    is_system: bool = False


class RoleCreateRequest(BaseModel):
    name: str
    category: str


class RoleListResponse(BaseModel):
    roles: List[Role]
    roles_by_category: Dict[str, List[Role]]


class RelationshipType(BaseModel):
    id: str
    name: str
    category: str
    is_system: bool = False


class RelationshipCreateRequest(BaseModel):
    name: str
    category: str


class RelationshipListResponse(BaseModel):
    relationships: List[RelationshipType]
    relationships_by_category: Dict[str, List[RelationshipType]]


class EventType(BaseModel):
    id: str
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None
    is_system: bool = False


class EventTypeCreateRequest(BaseModel):
    name: str


class Tag(BaseModel):
    id: str
    name: str
    color: Optional[str] = None


class TagCreateRequest(BaseModel):
    name: str
    color: Optional[str] = None


class TagUpdateRequest(BaseModel):
    name: str
    color: Optional[str] = None
