"""Click command and group classes that accept an ``examples`` keyword.

Commands declaring examples grow an eager ``--examples`` flag that prints
them and exits, so ``--help`` stays short.
"""

from __future__ import annotations

from typing import Any

import click


def _print_examples(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
    examples = getattr(ctx.command, "examples", None)
    if not value or not examples:
        return
    click.echo(f"Examples for '{ctx.command_path}':\n")
    click.echo(examples)
    ctx.exit(0)


class _ExamplesMixin:
    examples: str | None

    def _init_examples(self, examples: str | None) -> None:
        self.examples = examples
        if examples:
            self.params.append(  # type: ignore[attr-defined]
                click.Option(
                    ["--examples"],
                    is_flag=True,
                    is_eager=True,
                    expose_value=False,
                    callback=_print_examples,
                    help="Show usage examples and exit.",
                )
            )


class FmCommand(_ExamplesMixin, click.Command):
    def __init__(self, *args: Any, examples: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._init_examples(examples)


class FmGroup(_ExamplesMixin, click.Group):
    """Group whose subcommands default to :class:`FmCommand`."""

    command_class = FmCommand

    def __init__(self, *args: Any, examples: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._init_examples(examples)
