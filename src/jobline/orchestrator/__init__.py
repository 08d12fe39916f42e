"""Job orchestration: store, queue, worker and batch consumer.

Why a SQLite-backed queue instead of Celery / SQS?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The interesting part of this package is not the transport but the ordering
rules between three writers that never coordinate directly:

- the producer inserts the job row before it publishes the queue reference;
- the cancel handler flips ``cancelled`` and publishes the cancellation event
  in one transaction;
- the worker only writes ``processing``, ``completed`` or ``failed`` through a
  conditional update that refuses cancelled or finished rows.

The queue keeps the semantics a hosted queue would give (visibility timeout,
receipt handles, redelivery, dead-lettering) so the same worker code runs
against either, while local development needs nothing but a file.
"""
