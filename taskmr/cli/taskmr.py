import logging
from typing import Optional

import typer

from taskmr.core.taskmr_core.config import load_config
from .commands.core import add, edit, close, reopen, list_items, show, history, rebuild, verify

app = typer.Typer(help="taskmr - event-sourced task manager", no_args_is_help=True)


@app.callback()
def main(
    ctx: typer.Context,
    backend: Optional[str] = typer.Option(None, "--backend", "-b", help="Store to use: es or simple"),
    data_dir: Optional[str] = typer.Option(None, "--data-dir", help="Directory holding the databases"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Load configuration shared by all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {"backend": backend, "data_dir": data_dir}
    try:
        config = load_config()
        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)
        config.validate()
    except ValueError as e:
        raise typer.BadParameter(str(e))
    ctx.obj = config


# Register task commands
app.command()(add)
app.command()(edit)
app.command()(close)
app.command()(reopen)
app.command(name="list")(list_items)  # "list" is a Python builtin, so use name mapping
app.command()(show)

# Register event log commands
app.command()(history)
app.command()(rebuild)
app.command()(verify)


# Entry point function for the CLI script
def cli() -> None:
    app()
