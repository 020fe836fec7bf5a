"""
Log console - live and historical output of PM2-supervised processes.

Fans the supervisor's live log bus out to every connected viewer, reads
bounded history straight from each process's log files, and merges the two
into one ordered, memory-bounded view per viewer.
"""

__version__ = "0.1.0"
