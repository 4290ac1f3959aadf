"""Building blocks for a small POSIX shell: variables, prompt, history, recorded transactions and job control."""

__version__ = "0.1.0"