# NG-HEADER: Nombre de archivo: ng.py
# NG-HEADER: Ubicación: cli/ng.py
# NG-HEADER: Descripción: CLI de operación del pipeline de fulfillment (Typer)
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""CLI principal usando Typer."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from agent_core.config import settings
from services.fulfillment.errors import FulfillmentError

app = typer.Typer(help="Herramientas de línea de comandos del pipeline de fulfillment")

ROOT = Path(__file__).resolve().parent.parent


@app.command()
def db_init() -> None:
    """Inicializa la base de datos ejecutando las migraciones."""
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "db" / "migrations"))
    typer.echo("Aplicando migraciones...")
    command.upgrade(cfg, "head")
    typer.echo("Migraciones aplicadas")


@app.command()
def materialize(
    buyer_order_id: int,
    supplier_code: Optional[str] = typer.Option(None, help="Código de proveedor (default: SUPPLIER_CODE)"),
) -> None:
    """Expande la receta de una orden y la deja pendiente para el worker."""
    from db.session import SessionLocal
    from services.fulfillment.mixing import MixingEngine
    from services.fulfillment.store import FulfillmentStore

    async def _run() -> int:
        return await MixingEngine(FulfillmentStore(SessionLocal)).materialize_buyer_order(
            buyer_order_id, supplier_code or settings.supplier_code
        )

    try:
        order_id = asyncio.run(_run())
    except FulfillmentError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Orden de fulfillment {order_id} creada (pending)")


@app.command()
def status(buyer_order_id: int) -> None:
    """Muestra el estado de una orden y su fulfillment."""
    from db.session import SessionLocal
    from services.fulfillment.store import FulfillmentStore

    data = asyncio.run(FulfillmentStore(SessionLocal).order_status(buyer_order_id))
    if data is None:
        typer.echo(f"Orden {buyer_order_id} no encontrada", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


@app.command()
def api(
    host: str = typer.Option("127.0.0.1", envvar="GERBANG_HOST"),
    port: int = typer.Option(8000, envvar="GERBANG_PORT"),
    reload: bool = typer.Option(False, "--reload", help="Recarga automática (desarrollo)"),
) -> None:
    """Levanta la API HTTP con Uvicorn."""
    import uvicorn

    uvicorn.run(
        "services.api:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


@app.command()
def worker(once: bool = typer.Option(False, "--once", help="Procesa a lo sumo una orden y termina")) -> None:
    """Ejecuta el worker de fulfillment."""
    from workers.fulfillment import configure_logging, run_worker

    configure_logging(settings.log_level)
    asyncio.run(run_worker(settings, once=once))


if __name__ == "__main__":
    app()
