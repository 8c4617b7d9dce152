"""CLI entrypoint for run-command-handler."""

from pathlib import Path

import rich_click as click

from run_command_handler import __version__
from run_command_handler.controllers import HandlerCliController, LifecycleCommand
from run_command_handler.lifecycle import LifecycleOperation

click.rich_click.USE_MARKDOWN = True
HANDLER_CONTROLLER = HandlerCliController()


@click.group()
@click.version_option(version=__version__, prog_name="run-command-handler")
def run_command_handler() -> None:
    """Run command extension handler."""


def _lifecycle_command(operation: LifecycleOperation, help_text: str) -> None:
    @run_command_handler.command(operation.verb, help=help_text)
    @click.option(
        "--seq-num",
        type=click.IntRange(min=0),
        default=None,
        help="Invocation sequence number. Defaults to ConfigSequenceNumber or latest settings.",
    )
    @click.option(
        "--environment-path",
        type=click.Path(path_type=Path, dir_okay=False),
        default=None,
        help="Path to HandlerEnvironment.json.",
    )
    @click.option(
        "--data-dir",
        type=click.Path(path_type=Path, file_okay=False),
        default=None,
        help="Handler data folder for sequence state and downloads.",
    )
    def _command(
        seq_num: int | None,
        environment_path: Path | None,
        data_dir: Path | None,
    ) -> None:
        result = HANDLER_CONTROLLER.run(
            LifecycleCommand(
                operation=operation.verb,
                seq_num=seq_num,
                environment_path=environment_path,
                data_dir=data_dir,
            ),
        )
        _emit_lines(result.lines)
        if not result.success:
            raise click.ClickException(f"{operation.verb} failed.")


_lifecycle_command(LifecycleOperation.INSTALL, "Prepare the handler data folder.")
_lifecycle_command(LifecycleOperation.ENABLE, "Fetch and run the configured script once.")
_lifecycle_command(LifecycleOperation.DISABLE, "Disable the handler.")
_lifecycle_command(LifecycleOperation.UNINSTALL, "Remove the handler data folder.")
_lifecycle_command(LifecycleOperation.UPDATE, "Update the handler.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    run_command_handler()
