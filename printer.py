import sys

from colorama import Fore


INFO = Fore.CYAN
WARN = Fore.YELLOW
ERR = Fore.RED
OUT = Fore.GREEN
RESET = Fore.RESET

PREFIXES = {
    OUT: "[+]",
    ERR: "[-]",
    WARN: "[!]",
    INFO: "[i]",
}


class Printer:
    def __init__(self, stream=None, quiet=False, verbose=False, color=True) -> None:
        """Console output sink handed to every component

        Args:
            `stream` (`file`, optional): where to write. Defaults to `sys.stdout`.
            `quiet` (`bool`, optional): suppress everything but errors. Defaults to `False`.
            `verbose` (`bool`, optional): show verbose messages. Defaults to `False`.
            `color` (`bool`, optional): wrap messages in terminal colors. Defaults to `True`.
        """
        self.stream = stream
        self.quiet = quiet
        self.is_verbose = verbose
        self.color = color

    def custom_print(self, text, color=OUT, quiet_override=False, end="\n"):
        """Print `text` with specified `color`

        Args:
            text (`str`): the text to print
            color (`const`, optional): the color of the `text`. Defaults to `OUT`.
            quiet_override (`bool`, optional): Whether to print in quiet mode. Defaults to `False`.
            end (`str`, optional): end param of the print function. Defaults to "`\\n`".
        """
        if self.quiet and not quiet_override:
            return
        prefix = PREFIXES.get(color)
        if prefix:
            text = f"{prefix} {text}"
        if self.color:
            text = f"{color}{text}{RESET}"
        print(text, end=end, file=self.stream or sys.stdout)

    def out(self, text):
        self.custom_print(text, OUT)

    def info(self, text):
        self.custom_print(text, INFO)

    def warn(self, text):
        self.custom_print(text, WARN)

    def error(self, text):
        self.custom_print(text, ERR, True)

    def verbose(self, text, color=INFO):
        if self.is_verbose:
            self.custom_print(text, color)

    def plain(self, text=""):
        """Print `text` without prefix or color (headers, separators)"""
        if not self.quiet:
            print(text, file=self.stream or sys.stdout)
