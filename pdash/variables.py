"""Shell variables, the exported environment and parameter expansion."""

from __future__ import annotations

import enum
import os
import subprocess
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass

from pdash.prompt import Prompt

_SPECIAL_NAMES = frozenset({"?", "$", "#", "0"})
_SINGLE_CHAR_VARS = frozenset("$?#0123456789")


class VarFlag(enum.IntFlag):
    """Attributes a variable may carry."""

    NONE = 0
    EXPORT = 1
    READONLY = 2
    SPECIAL = 4
    UPDATE_ON_READ = 8


class VariableError(Exception):
    """Raised when a variable cannot be created, changed or removed."""


@dataclass
class Variable:
    """A named shell variable."""

    name: str
    raw_value: str = ""
    flags: VarFlag = VarFlag.NONE
    update_func: Callable[[], str] | None = None

    @property
    def value(self) -> str:
        if self.flags & VarFlag.UPDATE_ON_READ and self.update_func is not None:
            self.raw_value = self.update_func()
        return self.raw_value

    def set_value(self, value: str) -> None:
        if self.flags & VarFlag.READONLY:
            raise VariableError(f"{self.name}: is read only")
        self.raw_value = value


def _is_name_start(ch: str) -> bool:
    return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def _is_name_char(ch: str) -> bool:
    return _is_name_start(ch) or "0" <= ch <= "9"


def _strip_newline(text: str) -> str:
    return text[:-1] if text.endswith("\n") else text


class VariableManager:
    """The shell's variable table.

    Exported variables are mirrored into *environ*, which defaults to the
    process environment and is also where the initial variables come from.
    """

    def __init__(
        self,
        environ: MutableMapping[str, str] | None = None,
        prompt: Prompt | None = None,
    ) -> None:
        self._environ = os.environ if environ is None else environ
        self._prompt = prompt or Prompt()
        self._vars: dict[str, Variable] = {}
        self._initialize()

    def _initialize(self) -> None:
        for name, value in list(self._environ.items()):
            if name:
                self.set(name, value, VarFlag.EXPORT)

        prompt_flags = VarFlag.READONLY | VarFlag.UPDATE_ON_READ
        self.set("PS1", "$ ", prompt_flags)
        self.set("FPS1", "$ ", prompt_flags)
        self.set_update_func("PS1", self._prompt.raw)
        self.set_update_func("FPS1", self._prompt.formatted)
        self.set("PS2", "> ")
        self.set("IFS", " \t\n")

        self.set("?", "0", VarFlag.SPECIAL)
        self.set("$", str(os.getpid()), VarFlag.SPECIAL)

        if not self.exists("PATH"):
            self.set("PATH", "/usr/local/bin:/usr/bin:/bin", VarFlag.EXPORT)
        if not self.exists("HOME"):
            self.set("HOME", self._environ.get("HOME", "/"), VarFlag.EXPORT)

    def set(self, name: str, value: str, flags: VarFlag = VarFlag.NONE) -> None:
        """Create or update *name*; flags are added to any it already has."""
        if not name:
            raise VariableError("variable name must not be empty")
        flags = VarFlag(flags)
        if name in _SPECIAL_NAMES:
            flags |= VarFlag.SPECIAL

        var = self._vars.get(name)
        if var is None:
            var = Variable(name, value, flags)
            self._vars[name] = var
        else:
            var.set_value(value)
            var.flags |= flags
        if var.flags & VarFlag.EXPORT:
            self._environ[name] = value

    def set_update_func(self, name: str, func: Callable[[], str]) -> None:
        """Attach a function that recomputes the value of *name* on read."""
        var = self._vars.get(name)
        if var is not None:
            var.update_func = func

    def get(self, name: str) -> str:
        """The value of *name*, or an empty string if it is not set."""
        var = self._vars.get(name)
        return var.value if var is not None else ""

    def exists(self, name: str) -> bool:
        return name in self._vars

    def _lookup(self, name: str) -> Variable:
        try:
            return self._vars[name]
        except KeyError:
            raise KeyError(name) from None

    def unset(self, name: str) -> None:
        """Remove *name*; read-only and special variables cannot be removed."""
        var = self._lookup(name)
        if var.flags & (VarFlag.READONLY | VarFlag.SPECIAL):
            raise VariableError(f"{name}: cannot unset")
        if var.flags & VarFlag.EXPORT:
            self._environ.pop(name, None)
        del self._vars[name]

    def export(self, name: str) -> None:
        """Mark *name* as exported and copy it into the environment."""
        var = self._lookup(name)
        var.flags |= VarFlag.EXPORT
        self._environ[name] = var.value

    def set_readonly(self, name: str) -> None:
        self._lookup(name).flags |= VarFlag.READONLY

    def names(self) -> list[str]:
        return sorted(self._vars)

    def exported(self) -> list[tuple[str, str]]:
        return [
            (name, self._vars[name].value)
            for name in self.names()
            if self._vars[name].flags & VarFlag.EXPORT
        ]

    def environment(self) -> list[str]:
        return [f"{name}={value}" for name, value in self.exported()]

    def expand(self, text: str) -> str:
        """Expand variables and command substitutions in *text*."""
        parts: list[str] = []
        pos = 0
        length = len(text)
        while pos < length:
            ch = text[pos]
            if ch == "$" and text.startswith("$(", pos):
                pos, part = self._expand_paren(text, pos + 2)
                parts.append(part)
            elif ch == "`":
                start = pos + 1
                end = text.find("`", start)
                if end < 0:
                    parts.append(text[pos:])
                    pos = length
                else:
                    output = self.run_command_substitution(text[start:end])
                    parts.append(_strip_newline(output))
                    pos = end + 1
            elif ch == "$" and pos + 1 < length:
                pos, part = self._expand_variable(text, pos)
                parts.append(part)
            else:
                parts.append(ch)
                pos += 1
        return "".join(parts)

    def _expand_paren(self, text: str, start: int) -> tuple[int, str]:
        depth = 1
        pos = start
        while pos < len(text) and depth > 0:
            if text[pos] == "(":
                depth += 1
            elif text[pos] == ")":
                depth -= 1
            if depth > 0:
                pos += 1
        if pos < len(text) and depth == 0:
            output = self.run_command_substitution(text[start:pos])
            return pos + 1, _strip_newline(output)
        return pos, "$(" + text[start:pos]

    def _expand_variable(self, text: str, dollar: int) -> tuple[int, str]:
        pos = dollar + 1
        ch = text[pos]
        if ch == "{":
            close = text.find("}", pos + 1)
            if close < 0:
                return len(text), text[dollar:]
            return close + 1, self.get(text[pos + 1 : close])
        if ch in _SINGLE_CHAR_VARS:
            return pos + 1, self.get(ch)
        if _is_name_start(ch):
            end = pos
            while end < len(text) and _is_name_char(text[end]):
                end += 1
            return end, self.get(text[pos:end])
        return pos, "$"

    def run_command_substitution(self, command: str) -> str:
        """Run *command* with /bin/sh and return what it wrote to stdout."""
        try:
            completed = subprocess.run(
                ["/bin/sh", "-c", command],
                stdout=subprocess.PIPE,
                check=False,
            )
        except OSError:
            return ""
        return completed.stdout.decode(errors="replace")

    def update_special_vars(self, exit_status: int) -> None:
        """Refresh $? and $$ after a command has run."""
        self.set("?", str(exit_status), VarFlag.SPECIAL)
        self.set("$", str(os.getpid()), VarFlag.SPECIAL)