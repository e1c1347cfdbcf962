# NG-HEADER: Nombre de archivo: base.py
# NG-HEADER: Ubicación: db/base.py
# NG-HEADER: Descripción: Declaración base de SQLAlchemy para los modelos de fulfillment.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Declarative base con convención de nombres estable para constraints e índices."""
from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# Aplica solo a constraints e índices sin nombre explícito
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))
