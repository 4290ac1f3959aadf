"""Recorded command transactions that can be replayed step by step."""

from __future__ import annotations

import enum
import os
import sys
from collections import deque
from os import PathLike
from pathlib import Path
from typing import TextIO

DEFAULT_DIRECTORY = "./etc/dash/transaction/"

_CLEAR_LINE = "\033[1A\033[K"
_HELP = "a-add d-delete m-modify t-toEnd q-quit j-jump b-back h-help"


class InputMode(enum.Enum):
    """Where the shell takes its next command line from."""

    NORMAL = "normal"
    TRANSACTION = "transaction"
    RECORD = "record"
    SPECIAL = "special"


class TransactionError(Exception):
    """Raised when a transaction operation cannot be carried out."""


def read_char(stream: TextIO | None = None) -> str:
    """Read one character, without waiting for Enter when on a terminal."""
    stream = sys.stdin if stream is None else stream
    try:
        fd = stream.fileno()
        is_tty = os.isatty(fd)
    except (AttributeError, OSError, ValueError):
        is_tty = False
    if not is_tty:
        return stream.read(1)

    import termios

    stored = termios.tcgetattr(fd)
    settings = termios.tcgetattr(fd)
    settings[3] &= ~termios.ICANON
    settings[6][termios.VTIME] = 0
    settings[6][termios.VMIN] = 1
    termios.tcsetattr(fd, termios.TCSANOW, settings)
    try:
        char = os.read(fd, 1).decode(errors="replace")
        sys.stdout.write("\b")
        sys.stdout.flush()
    finally:
        termios.tcsetattr(fd, termios.TCSANOW, stored)
    return char


def _read_lines(path: Path) -> list[str]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return []
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


class TransactionManager:
    """Records, stores and replays named lists of commands.

    Each transaction is kept as a file of one command per line in
    *directory*.
    """

    def __init__(
        self,
        directory: str | PathLike[str] = DEFAULT_DIRECTORY,
        *,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self.directory = Path(directory)
        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr
        self.mode = InputMode.NORMAL
        self.loaded = False
        self.auto_run = False
        self.current_name = ""
        self.current_commands: list[str] = []
        self.current_index = 0
        self._transactions: dict[str, list[str]] = {}
        self._special: deque[str] = deque()

    @property
    def _in(self) -> TextIO:
        return self._stdin if self._stdin is not None else sys.stdin

    @property
    def _out(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def _err(self) -> TextIO:
        return self._stderr if self._stderr is not None else sys.stderr

    @property
    def transactions(self) -> dict[str, list[str]]:
        """A copy of all stored transactions, ordered by name."""
        return {name: list(cmds) for name, cmds in sorted(self._transactions.items())}

    def _write(self, name: str, lines: list[str]) -> None:
        path = self.directory / name
        self.directory.mkdir(parents=True, exist_ok=True)
        path.unlink(missing_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as handle:
            handle.writelines(f"{line}\n" for line in lines)

    def _store_current(self) -> None:
        if not self.current_name:
            return
        self._write(self.current_name, self.current_commands)
        self._transactions[self.current_name] = list(self.current_commands)

    def load(self) -> None:
        """Create the directory if needed and read every transaction file."""
        self.directory.mkdir(parents=True, exist_ok=True)
        self.loaded = True
        self._transactions.clear()
        for path in self.directory.iterdir():
            if path.is_file():
                self._transactions[path.stem] = _read_lines(self.directory / path.name)

    def add_command(self, command: str) -> None:
        """Append *command* to the transaction being recorded."""
        self.current_commands.append(command)

    def start(self, name: str) -> None:
        """Begin replaying the stored transaction *name* in single-step mode."""
        if name not in self._transactions:
            raise TransactionError(f"{name}事务不存在")
        self.current_name = name
        self.current_commands = list(self._transactions[name])
        self.current_index = 0
        self.mode = InputMode.TRANSACTION
        self._out.write(f"开始事务：{name}\n")
        self.auto_run = False

    def record(self, name: str) -> None:
        """Begin recording a new transaction called *name*."""
        self.current_name = name
        self.current_commands = []
        self.mode = InputMode.RECORD
        self._out.write(f"开始记录事务：{name}\n")

    def complete(self) -> None:
        """Finish recording; the last command (the one ending it) is dropped."""
        if len(self.current_commands) <= 1:
            raise TransactionError("事务命令列表为空")
        self.current_commands.pop()
        self._store_current()
        self.current_name = ""
        self.current_commands = []
        self.mode = InputMode.NORMAL
        self._out.write("事务记录结束\n")

    def delete(self, name: str) -> None:
        """Remove the stored transaction *name* and its file."""
        if name not in self._transactions:
            raise TransactionError(f"{name}事务不存在")
        if self.current_name == name:
            raise TransactionError("当前事务不能删除")
        del self._transactions[name]
        (self.directory / name).unlink(missing_ok=True)
        self._out.write(f"已删除事务：{name}\n")

    def _finish(self, message: str) -> None:
        self._store_current()
        self.mode = InputMode.NORMAL
        self.current_name = ""
        self._out.write(message)

    def next_command(self) -> str:
        """The next command of the running transaction, or "" once it is over.

        Reaching the last command saves any edits and ends the transaction.
        """
        if self.current_index < len(self.current_commands):
            if self.current_index == len(self.current_commands) - 1:
                self._finish("事务结束，命令输出：\n")
            command = self.current_commands[self.current_index]
            self.current_index += 1
            return command
        self._finish("事务结束\n")
        return ""

    def info(self) -> None:
        """Print a table of stored transactions and their command counts."""
        out = self._out
        out.write("编号\t事务名称\t命令数\n")
        for number, (name, commands) in enumerate(sorted(self._transactions.items())):
            out.write(f"{number}\t{name}\t{len(commands)}\n")

    def interrupt(self) -> None:
        """Abandon the running transaction."""
        self.current_name = ""
        self.current_index = 0
        self.mode = InputMode.NORMAL

    def _read_line(self) -> str:
        line = self._in.readline()
        return line[:-1] if line.endswith("\n") else line

    def _clear_line(self) -> None:
        self._out.write(_CLEAR_LINE)
        self._out.flush()

    def step(self, first: bool = False) -> int:
        """Show the current command and act on one key from the user.

        Returns 1 when a jump or delete ran past the last command, else 0.
        """
        out = self._out
        if first:
            out.write("\n")
        while True:
            index = self.current_index
            if not 0 <= index < len(self.current_commands):
                raise TransactionError("没有可执行的命令")
            out.write(f"第 {index + 1} 条命令：{self.current_commands[index]}\n")
            if self.auto_run:
                return 0
            key = read_char(self._in)
            is_last = index + 1 >= len(self.current_commands)
            if key == "a":
                self._clear_line()
                out.write("请输入命令：\n")
                self.current_commands.insert(index, self._read_line())
                return 0
            if key == "b":
                if index > 0:
                    self.current_index -= 1
                    self._clear_line()
                else:
                    self._err.write("已经是第一条命令\n")
                continue
            if key == "d":
                if not is_last:
                    del self.current_commands[index]
                    self._clear_line()
                    continue
                out.write("这是最后一条命令\n")
                self.current_index += 1
                return 1
            if key == "h":
                self._clear_line()
                out.write(f"{_HELP}\n")
                continue
            if key == "j":
                if not is_last:
                    self.current_index += 1
                    self._clear_line()
                    continue
                out.write("已经最后一条命令\n")
                self.current_index += 1
                return 1
            if key == "m":
                out.flush()
                self.current_commands[index] = self._read_line()
                return 0
            if key == "q":
                self.interrupt()
            elif key == "t":
                self.auto_run = True
            return 0

    def input_mode(self, update: bool = False) -> InputMode:
        """The current input mode, dropping SPECIAL once its queue is empty."""
        if update and self.mode is InputMode.SPECIAL and not self._special:
            self.mode = InputMode.NORMAL
        return self.mode

    def add_special_command(self, command: str) -> None:
        self._special.append(command)

    def next_special_command(self) -> str:
        """Pop the next queued special command, or "" if none is queued."""
        return self._special.popleft() if self._special else ""