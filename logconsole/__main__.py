"""
Entry point for running the log console via `python -m logconsole`.

Dispatches to the command line interface (`serve`, `processes`, `watch`).
"""

from .cli import main

if __name__ == "__main__":
    main()
