"""Concurrency limiting adapters.

Each external resource the application talks to gets its own limiter so the
number of simultaneous calls stays under that service's tolerance. Callers
depend on the abstract interface; the FIFO implementation is the only backend
for now.
"""
