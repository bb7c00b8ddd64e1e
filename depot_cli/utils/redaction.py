"""
Masking of credential material in argument lists and free text.
"""

from typing import Iterable, Sequence

MASK = "***"
SECRET_FLAGS = frozenset({"-password"})


def mask_arguments(args: Sequence[str]) -> list[str]:
    """Returns a copy of `args` with the value following any secret flag masked."""
    masked: list[str] = []
    hide_next = False
    for arg in args:
        if hide_next:
            masked.append(MASK)
            hide_next = False
            continue
        masked.append(arg)
        if arg in SECRET_FLAGS:
            hide_next = True
    return masked


class Redactor:
    """
    Replaces every known secret value in a piece of text.

    Usage:
        redact = Redactor(["hunter2"])
        redact("login with hunter2")  # -> "login with ***"
    """

    def __init__(self, secrets: Iterable[str | None] = ()):
        self._secrets: list[str] = []
        for secret in secrets:
            self.add(secret)

    def add(self, secret: str | None) -> None:
        if secret and secret not in self._secrets:
            self._secrets.append(secret)
            # Longest first so overlapping secrets never leave a partial tail.
            self._secrets.sort(key=len, reverse=True)

    def __call__(self, text: str | None) -> str:
        if not text:
            return text or ""
        for secret in self._secrets:
            text = text.replace(secret, MASK)
        return text

    def command_line(self, args: Sequence[str]) -> str:
        """A printable, masked rendering of an argument list (for logs only)."""
        return self(" ".join(mask_arguments(args)))
