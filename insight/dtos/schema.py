"""
Schema introspection DTOs
Ephemeral: rebuilt from the catalog on every pipeline run
"""
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel


class ColumnSchema(BaseModel):
    name: str
    type: str  # formatted, e.g. "character varying(255)" or "numeric(10,2)"
    nullable: bool
    is_primary: bool = False
    is_foreign: bool = False
    default_value: Optional[Any] = None
    comment: Optional[str] = None


class RelationshipSchema(BaseModel):
    # Only foreign-key constraints are inspected, so many-to-one is the default
    type: Literal["one-to-one", "one-to-many", "many-to-one", "many-to-many"] = "many-to-one"
    related_table: str
    foreign_key: str
    referenced_key: str


class TableSchema(BaseModel):
    table_name: str
    columns: List[ColumnSchema] = []
    relationships: List[RelationshipSchema] = []
    sample_data: List[Dict[str, Any]] = []
