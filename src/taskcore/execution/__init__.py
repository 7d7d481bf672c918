"""taskcore.execution -- running work: backoff, retries, queueing, composition.

MODULE MAP (recommended reading order)
──────────────────────────────────────
  1. backoff.py   ─ BackoffPolicy, ExponentialBackoff (seeded jitter)
  2. retry.py     ─ RetryingExecutor, RetryState, with_retry
  3. queue.py     ─ TaskQueue, Task, TaskHandle (bounded priority FIFO)
  4. runner.py    ─ TaskRunner (cache → queue → executor)
"""
