"""Subtask lifecycle and coordination engine.

Flow of one run::

    Dispatcher ──► SubtaskStore ◄── WorkerPool (one thread per subtask)
                        ▲
                        └── CompletionMonitor ──► ProgressReporter
                                   │
                                   ▼
                            MarkdownAggregator

Assignment of workers to subtasks is static and decided at dispatch time, so
each subtask record has exactly one writer at any moment.  The store still
guards the ``pending -> in_progress`` move with a compare-and-set claim, which
keeps the single-writer rule intact when workers pull from a shared pool
instead of receiving a fixed assignment.
"""
