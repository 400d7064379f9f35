"""SQLite-backed deferred generation queue.

Why not Celery / RQ?
~~~~~~~~~~~~~~~~~~~~
Work is produced and drained on one host, the artifacts land in the same
SQLite file as the cache, and claims only need a conditional status update.
A broker would add an operational dependency without removing any of the
retry classification or load-aware throttling the worker does itself.
"""
