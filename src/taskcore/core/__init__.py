"""taskcore.core -- primitives shared by every execution component.

Architecture::

    errors.py          Structured error hierarchy and the caller-visible taxonomy
    result.py          Result[T] envelope (Ok / Err) for batch outcomes
    cancellation.py    CancellationToken observed at every suspension point
    cache.py           TTLCache with single-flight get_or_compute
    logging.py         structlog configuration and context binding
    settings.py        TaskCoreSettings (pydantic-settings, TASKCORE_* env)
"""
