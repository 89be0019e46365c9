from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from prometheus_client import start_http_server

from .coordinator import DeliveryEngine, EngineSettings, get_settings
from .errors import DeliveryEngineError
from .templates import TemplateRegistry
from .utils import iter_ndjson

app = typer.Typer(help="behavior delivery engine operational CLI")


def _settings(max_retries: Optional[int], interval: Optional[float]) -> EngineSettings:
    overrides = {}
    if max_retries is not None:
        overrides["max_retries"] = max_retries
    if interval is not None:
        overrides["scheduler_interval"] = interval
    return get_settings().model_copy(update=overrides)


@app.command("templates")
def templates():
    """Print the built-in template catalog."""
    catalog = [t.model_dump(mode="json") for t in TemplateRegistry().all()]
    typer.echo(json.dumps({"templates": catalog, "total_available": len(catalog)}, indent=2))


@app.command("settings")
def settings():
    """Print effective engine settings (environment prefix BDE_)."""
    typer.echo(json.dumps(get_settings().model_dump(mode="json"), indent=2))


@app.command("deliver")
def deliver(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="NDJSON file of output requests"),
    timeout: float = typer.Option(5.0, "--timeout", help="Seconds to wait for the queue to drain"),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Override BDE_MAX_RETRIES"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Scheduler tick in seconds"),
    metrics_port: Optional[int] = typer.Option(
        None, "--metrics-port", help="Expose Prometheus metrics on this port"
    ),
):
    """Submit requests to an engine with simulated handlers and print final statuses."""
    cfg = _settings(max_retries, interval)
    port = metrics_port or cfg.metrics_port
    if port:
        start_http_server(port)
        logger.info(f"Prometheus metrics available at http://localhost:{port}/metrics")

    rejected = asyncio.run(_deliver(path, cfg, timeout))
    if rejected:
        raise typer.Exit(code=1)


async def _deliver(path: Path, cfg: EngineSettings, timeout: float) -> int:
    ids: List[str] = []
    rejected = 0
    engine = DeliveryEngine(settings=cfg)
    await engine.start()
    try:
        for lineno, raw in enumerate(iter_ndjson(path), start=1):
            try:
                result = await engine.submit(raw)
            except DeliveryEngineError as e:
                rejected += 1
                typer.echo(json.dumps({"line": lineno, "error": str(e)}))
                continue
            ids.append(result.output_id)
    finally:
        await engine.stop(drain=True, timeout=timeout)

    report = await engine.status(ids)
    for output in report.outputs:
        info = output.delivery_info
        typer.echo(
            json.dumps(
                {
                    "output_id": output.id,
                    "status": info.status.value,
                    "retry_count": info.retry_count,
                    "target": info.target,
                    "last_error": info.last_error,
                }
            )
        )
    logger.info(f"Submitted {len(ids)} output(s), rejected {rejected}, still queued {report.queue_size}")
    return rejected


if __name__ == "__main__":
    app()
