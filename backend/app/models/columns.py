"""Column types shared by the revenue models."""

from enum import Enum as PyEnum

from sqlalchemy import JSON, Enum, Numeric
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# All money columns
Money = Numeric(12, 2, asdecimal=True)


def enum_column(enum_cls: type[PyEnum], name: str) -> Enum:
    """Enum stored by value as VARCHAR with a check constraint."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=lambda x: [e.value for e in x],
    )
