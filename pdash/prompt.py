"""Shell prompt construction: user, host and working directory."""

from __future__ import annotations

import enum
import os
import platform
import sys
from typing import TextIO

BLUE = "\033[1;34m"
GREEN = "\033[1;32m"
RED = "\033[1;31m"
YELLOW = "\033[1;33m"
RESET = "\033[0m"

RECOMMENDED_SIZE = 64
_ELLIPSIS = "+...+"


class PromptMode(enum.IntFlag):
    """Bits controlling how the formatted prompt is rendered."""

    NONE = 0
    COLOR = 1
    FORMAT_SHORT = 2


def shorten_cwd(user: str, hostname: str, cwd: str) -> str:
    """Abbreviate *cwd* so the whole prompt stays near the recommended width."""
    if len(user) + len(hostname) + len(cwd) + 2 < RECOMMENDED_SIZE:
        return cwd
    last_len = RECOMMENDED_SIZE - len(user) - len(hostname) - 2
    if last_len <= 7:
        return cwd
    start = cwd[: last_len // 2 - 2]
    end = cwd[len(cwd) - last_len // 2 + 3 :]
    return start + _ELLIPSIS + end


def reset_colors(stream: TextIO | None = None) -> None:
    """Write the terminal colour reset sequence."""
    (stream or sys.stdout).write(RESET)


class Prompt:
    """Builds the interactive prompt strings.

    The user, host name, working directory and root flag are looked up from
    the system unless given explicitly.
    """

    def __init__(
        self,
        mode: PromptMode = PromptMode.COLOR | PromptMode.FORMAT_SHORT,
        *,
        user: str | None = None,
        hostname: str | None = None,
        cwd: str | None = None,
        is_root: bool | None = None,
    ) -> None:
        self.mode = PromptMode(mode)
        self._user = user
        self._hostname = hostname
        self._cwd = cwd
        self._is_root = is_root

    def set_mode(self, mode: int) -> None:
        """Set the low 16 bits of *mode* and clear the bits given in the high 16."""
        high = mode >> 16
        low = mode & 0xFFFF
        self.mode = PromptMode(((int(self.mode) | low) & ~high) & 0xFFFF)

    @property
    def user(self) -> str:
        if self._user is not None:
            return self._user
        try:
            return os.getlogin()
        except OSError:
            return "unknown"

    @property
    def hostname(self) -> str:
        if self._hostname is not None:
            return self._hostname
        return platform.node()

    @property
    def cwd(self) -> str:
        if self._cwd is not None:
            return self._cwd
        try:
            return os.getcwd()
        except OSError:
            return "/"

    @property
    def is_root(self) -> bool:
        if self._is_root is not None:
            return self._is_root
        getuid = getattr(os, "getuid", None)
        return getuid is not None and getuid() == 0

    def formatted(self) -> str:
        """The prompt honouring the colour and shortening modes."""
        user, hostname, cwd = self.user, self.hostname, self.cwd
        if self.mode & PromptMode.FORMAT_SHORT:
            cwd = shorten_cwd(user, hostname, cwd)
        indicator, indicator_color = ("#", RED) if self.is_root else ("$", YELLOW)
        if self.mode & PromptMode.COLOR:
            return (
                f"{GREEN}{user}@{hostname}{RESET}:"
                f"{BLUE}{cwd}{indicator_color}{indicator}{RESET} "
            )
        return f"{user}@{hostname}:{cwd}{indicator}"

    def raw(self) -> str:
        """The uncoloured, unabbreviated prompt."""
        indicator = "#" if self.is_root else "$"
        return f"{self.user}@{self.hostname}:{self.cwd}{indicator} "

    def print(self, stream: TextIO | None = None) -> None:
        """Write the formatted prompt followed by a colour reset."""
        out = stream or sys.stdout
        out.write(self.formatted())
        reset_colors(out)