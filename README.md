# pdash

Components for building a small interactive POSIX shell in Python. You
import the pieces into your own shell loop. The package has no command of
its own.

## Modules

- `pdash.variables`
  - `VariableManager` is the variable table. Each variable carries `VarFlag`
    flags: `EXPORT`, `READONLY`, `SPECIAL` and `UPDATE_ON_READ`.
  - On creation it imports the given environment, which defaults to
    `os.environ`. It defines `PS1`, `FPS1`, `PS2`, `IFS`, `?` and `$`, and
    fills in `PATH` and `HOME` when they are missing.
  - Exported variables are written back into that environment.
  - `expand` handles `$name`, `${name}`, the single-character variables
    (`$?`, `$$`, `$#`, `$0`…`$9`), `$(cmd)` and `` `cmd` ``. Command
    substitutions run through `/bin/sh -c`.
  - Changing a read-only variable, unsetting a read-only or special variable,
    or setting an empty name raises `VariableError`.
  - `unset`, `export` and `set_readonly` raise `KeyError` for an unknown name.
- `pdash.prompt`
  - `Prompt` builds `user@host:cwd$` prompts. It uses `#` for root.
  - `formatted()` follows `PromptMode` (`COLOR`, `FORMAT_SHORT`). `raw()` is
    always plain and never shortened.
  - `set_mode` sets the bits in the low 16 bits of its argument and clears
    those in the high 16.
  - `shorten_cwd` abbreviates long directories with `+...+`.
  - `reset_colors` writes the ANSI reset sequence.
- `pdash.history`
  - `History` holds `HistoryEntry` records numbered from 1.
  - It skips empty lines and consecutive duplicates, and drops the oldest
    entry once `max_size` is exceeded.
  - `search` matches a regular expression. An invalid pattern is matched as a
    plain substring.
  - `save` and `load` use one `timestamp command` line per entry. When
    loading, a line with no leading number is taken whole as a command and
    stamped with the current time.
- `pdash.transaction`
  - `TransactionManager` records named command lists into a directory, one
    file per transaction. The default directory is `./etc/dash/transaction/`.
  - It replays them with `next_command`, either straight through or one step
    at a time with `step`. The step keys are `a` add, `b` back, `d` delete,
    `h` help, `j` jump, `m` modify, `q` quit and `t` run to end.
  - `InputMode` says where the shell's next line comes from. A queue of
    special commands is also kept.
  - Failures raise `TransactionError`.
  - `read_char` reads a single key without waiting for Enter on a terminal.
  - Messages printed to the user are in Chinese.
- `pdash.job_control`
  - `JobControl` tracks `Job`s and their `Process`es, keyed by job number.
  - It reaps children with `update_status` and moves jobs between foreground
    and background.
  - `show_jobs` prints a `jobs`-style listing and then forgets finished jobs
    that have been reported.
- `pdash.bg_jobs`
  - `JobTable` keeps jobs in numbered slots, plus a most-current-first order.
  - `find` resolves `%n`, `%%`, `%+`, `%-`, `%prefix` and pid specs. It
    raises `JobNotFoundError` when a spec matches nothing.
  - `fg_command` and `wait_command` implement the `fg`/`bg` and `wait`
    builtins.
  - `fork_parent`, `fork_child` and `wait_for_job` set up process groups and
    collect exit status.
- `pdash.bg_adapter`
  - `BackgroundJobAdapter` runs a command in the foreground, or detaches it
    in the background with a double fork.
  - A background command's stdout goes to `output_<pid>.txt` in
    `output_dir`.
  - When a `JobControl` is given, background jobs are also registered there.

## Example

```python
from pdash.variables import VariableManager, VarFlag
from pdash.history import History

variables = VariableManager(environ={"HOME": "/home/user"})
variables.set("GREETING", "hello", VarFlag.EXPORT)
print(variables.expand("${GREETING} from $HOME"))

history = History(max_size=500)
history.add("ls -l")
history.add("echo hi")
print([entry.command for entry in history.search("^ec")])
history.save("history.txt")
```

## What it does not do

There is no shell here to run. The package does not read, parse or execute
command lines. It has no builtins beyond the job-control ones listed above,
no line editing, and no `main` entry point. Tying these pieces into a
read–expand–run loop is left to the program that uses them.

## Requirements

- Python 3.10 or later on a POSIX system. Job control needs a terminal.
- No third-party dependencies.

To run the tests:

```
pip install -e .[test]
pytest
```