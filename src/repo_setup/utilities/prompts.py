from typing import Protocol

import click


class Prompter(Protocol):
    """The interactive questions a setup run may ask."""

    def confirm(self, message: str, default: bool = False) -> bool: ...

    def secret(self, message: str) -> str: ...


class ClickPrompter:
    """Asks on the terminal through click."""

    def confirm(self, message: str, default: bool = False) -> bool:
        return click.confirm(text=message, default=default)

    def secret(self, message: str) -> str:
        value: str = click.prompt(text=message, hide_input=True, default="", show_default=False)
        return value.strip()
