# NG-HEADER: Nombre de archivo: util.py
# NG-HEADER: Ubicación: db/migrations/util.py
# NG-HEADER: Descripción: Utilidades compartidas para scripts de migración.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.engine import Connection


def _insp(bind: Connection) -> sa.Inspector:
    return sa.inspect(bind)


def has_table(bind: Connection, name: str) -> bool:
    """Devuelve True si la tabla existe."""
    return _insp(bind).has_table(name)


def index_exists(bind: Connection, table: str, name: str) -> bool:
    """Chequea si un índice existe."""
    return any(ix["name"] == name for ix in _insp(bind).get_indexes(table))
