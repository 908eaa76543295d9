"""Lease-based task queue for photo to video generation.

Workers pull tasks, hold an exclusive time-bounded lease, extend it with
heartbeats, and report a terminal outcome. Lease expiry is a passive
predicate (``leased_until < now``) checked lazily by the dispatcher, which
re-offers the task, and by the reconciler, which fails it. There is no
per-task timer.
"""
