"""
Database schema for the mirror.

The DDL is a Jinja2 template rendered from the entity kind registry, so a
kind's columns are declared once, in ``tally_mirror.entities``.
"""
from pathlib import Path
from typing import Iterable, Optional
from jinja2 import Template
from ..entities import ENTITY_KINDS, EntityKind

# Path to schema template
SCHEMA_TEMPLATE = Path(__file__).parent / "schema.sql.j2"


def get_schema_sql(schema: str, kinds: Optional[Iterable[EntityKind]] = None) -> str:
    """Render the full schema SQL for the given schema name."""
    template = Template(SCHEMA_TEMPLATE.read_text(encoding="utf-8"))
    return template.render(
        schema=schema,
        kinds=list(kinds) if kinds is not None else list(ENTITY_KINDS.values()),
    )
