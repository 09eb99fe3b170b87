"""Terminal host for calculator plugins.

Reads two integers, lists the discovered plugins as a numbered menu,
reads a selection and prints the chosen plugin's result:

    $ calchost
    ひとつめの整数を入力してください: 6
    ふたつめの整数を入力してください: 7

    0: 足し算
    1: 割り算
    2: 掛け算
    3: 引き算
    計算に使用するプラグインを選択してください: 2

    結果は 42です

Exit status is 0 on success, 1 on a startup or computation error and 2
when input stays invalid after the allowed retries.
"""

import argparse
import dataclasses
import json
import logging
import re
import sys
from pathlib import Path
from typing import Callable, List, Optional

from dotenv import load_dotenv
from rich.console import Console

from .base import INT32_MAX, INT32_MIN, in_int32_range
from .config_loader import HostConfig, load_config
from .errors import (
    CalculatorPluginError,
    ComputationError,
    ConfigValidationError,
    DirectoryAccessError,
    DirectoryNotFoundError,
    UserInputError,
)
from .registry import PluginRegistry

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_BAD_INPUT = 2

PROMPT_FIRST = "ひとつめの整数を入力してください: "
PROMPT_SECOND = "ふたつめの整数を入力してください: "
PROMPT_SELECT = "計算に使用するプラグインを選択してください: "

# Optional sign and ASCII digits only
INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")


def parse_int(text: str) -> int:
    """Parse user input as a 32-bit signed integer.

    Raises:
        UserInputError: If text is not an integer or is out of range.
    """
    stripped = (text or "").strip()
    if not INTEGER_PATTERN.fullmatch(stripped):
        raise UserInputError(f"'{stripped}' is not an integer")
    value = int(stripped)
    if not in_int32_range(value):
        raise UserInputError(f"{value} is outside the range {INT32_MIN} to {INT32_MAX}")
    return value


class CalculatorHost:
    """Interactive console host around a PluginRegistry.

    Presentation goes through a rich Console; input goes through
    input_func so tests can feed answers without a terminal.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        console: Optional[Console] = None,
        input_func: Optional[Callable[[str], str]] = None,
        retries: int = 3
    ):
        self.registry = registry
        self.console = console or Console(highlight=False)
        self._input_func = input_func or self.console.input
        self.retries = max(1, retries)

    def _print(self, text: str = "") -> None:
        self.console.print(text, markup=False, highlight=False)

    def _error(self, text: str) -> None:
        self.console.print(text, style="red", markup=False, highlight=False)

    def _read(self, prompt: str) -> str:
        try:
            return self._input_func(prompt)
        except EOFError:
            raise UserInputError("No input available") from None

    def ask_int(self, prompt: str) -> int:
        """Prompt until an integer is entered or retries run out.

        Raises:
            UserInputError: After the last failed attempt.
        """
        for attempt in range(1, self.retries + 1):
            text = self._read(prompt)
            try:
                return parse_int(text)
            except UserInputError as exc:
                if attempt == self.retries:
                    raise
                self._error(f"{exc}. Please try again.")
        raise UserInputError("No valid integer entered")

    def render_menu(self) -> None:
        for info in self.registry.describe():
            self._print(f"{info.index}: {info.name}")

    def ask_selection(self) -> int:
        """Prompt for a menu index and check it against the registry.

        Raises:
            UserInputError: After the last failed attempt.
        """
        for attempt in range(1, self.retries + 1):
            text = self._read(PROMPT_SELECT)
            try:
                index = parse_int(text)
                self.registry.get(index)
                return index
            except UserInputError as exc:
                if attempt == self.retries:
                    raise
                self._error(f"{exc}. Please try again.")
        raise UserInputError("No valid selection entered")

    def run(
        self,
        a: Optional[int] = None,
        b: Optional[int] = None,
        selection: Optional[int] = None
    ) -> int:
        """Run one calculation, prompting for whatever was not supplied.

        Returns:
            Process exit status.
        """
        try:
            if a is None:
                a = self.ask_int(PROMPT_FIRST)
            if b is None:
                b = self.ask_int(PROMPT_SECOND)
            self._print()

            self.render_menu()
            if selection is None:
                selection = self.ask_selection()
            plugin = self.registry.get(selection)
            self._print()

            result = self.registry.calculate(selection, a, b)
        except UserInputError as exc:
            self._error(f"Invalid input: {exc}")
            return EXIT_BAD_INPUT
        except ComputationError as exc:
            self._error(f"Calculation failed: {exc}")
            return EXIT_FAILURE

        logger.debug("Plugin '%s' computed %d from (%d, %d)", plugin.name, result, a, b)
        self._print(f"結果は {result}です")
        return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="calchost",
        description="Discover calculator plugins and run one on two integers"
    )
    parser.add_argument(
        "--plugin-root",
        help="Plugin root directory (default: plugins directory bundled with calchost)"
    )
    parser.add_argument(
        "--config",
        help="Path to JSON config file (default: $CALCHOST_CONFIG or ./calchost.json)"
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to .env file (default: .env)"
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List discovered plugins and exit"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="With --list, print plugin details as JSON"
    )
    parser.add_argument("-a", type=str, help="First integer (skips the prompt)")
    parser.add_argument("-b", type=str, help="Second integer (skips the prompt)")
    parser.add_argument(
        "--select", "-s",
        type=str,
        help="Menu index of the plugin to use (skips the prompt)"
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=3,
        help="Attempts allowed for each prompt (default: 3)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show debug logging"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only log errors"
    )
    return parser


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="[%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def _load_host_config(args: argparse.Namespace) -> HostConfig:
    config = load_config(args.config)
    if args.plugin_root:
        config.plugin_root = Path(args.plugin_root).expanduser().resolve()
    return config


def _report_error(console: Console, message: str) -> None:
    console.print(message, style="red", markup=False, highlight=False)


def _print_listing(console: Console, registry: PluginRegistry, as_json: bool) -> None:
    infos = registry.describe()
    if as_json:
        console.print_json(json.dumps([dataclasses.asdict(info) for info in infos], ensure_ascii=False))
        return
    for info in infos:
        console.print(f"{info.index}: {info.name}", markup=False, highlight=False)


def main(
    argv: Optional[List[str]] = None,
    console: Optional[Console] = None,
    input_func: Optional[Callable[[str], str]] = None
) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    if Path(args.env_file).exists():
        load_dotenv(args.env_file)

    console = console or Console(highlight=False)
    err_console = Console(stderr=True, highlight=False) if console.file is sys.stdout else console

    try:
        config = _load_host_config(args)
    except (ConfigValidationError, FileNotFoundError, json.JSONDecodeError) as exc:
        _report_error(err_console, f"Error: {exc}")
        return EXIT_FAILURE

    registry = PluginRegistry(config)
    try:
        registry.discover()
    except (DirectoryNotFoundError, DirectoryAccessError) as exc:
        _report_error(err_console, f"Error: {exc}")
        return EXIT_FAILURE
    except CalculatorPluginError as exc:
        _report_error(err_console, f"Error: Plugin discovery aborted: {exc}")
        return EXIT_FAILURE

    if len(registry) == 0:
        _report_error(err_console, f"Error: No calculator plugins found under {config.plugin_root}")
        return EXIT_FAILURE

    if args.list:
        _print_listing(console, registry, args.json)
        return EXIT_OK

    host = CalculatorHost(registry, console=console, input_func=input_func, retries=args.retries)
    try:
        a = parse_int(args.a) if args.a is not None else None
        b = parse_int(args.b) if args.b is not None else None
        selection = parse_int(args.select) if args.select is not None else None
    except UserInputError as exc:
        _report_error(err_console, f"Invalid input: {exc}")
        return EXIT_BAD_INPUT

    return host.run(a, b, selection)


if __name__ == "__main__":
    sys.exit(main())
