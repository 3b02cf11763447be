"""Helpers shared by CLI subcommands."""

from __future__ import annotations

import json

import typer

from pariledger.engine.core import MarketEngine, build_engine
from pariledger.models import OperationResult


def engine_from_ctx(ctx: typer.Context) -> MarketEngine:
    obj = ctx.obj
    if obj.get("engine") is None:
        obj["engine"] = build_engine(obj["settings"])
    return obj["engine"]


def echo_result(result: OperationResult) -> None:
    """Print a result's data, or its error and exit 1."""
    if not result.success:
        typer.echo(f"Error ({result.code}): {result.error}", err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(result.data, indent=2, default=str))
