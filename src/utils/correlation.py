"""correlation id management for run traceability. every log record and run-log entry of one batch carries the same run_id"""
import uuid
import threading
import contextvars
from contextvars import ContextVar
from functools import wraps
from typing import Callable, Optional, TypeVar


# context variable for thread/async-safe correlation id
_run_id: ContextVar[Optional[str]] = ContextVar('run_id', default=None)

# thread-local storage as fallback for sync contexts
_thread_local = threading.local()

T = TypeVar("T")


def generate_run_id() -> str:
    """generate a new run id. returns: 8-character hex string (e.g., "a3f9b2c4")"""
    return str(uuid.uuid4())[:8]


def set_run_id(run_id: str) -> None:
    _run_id.set(run_id)
    _thread_local.run_id = run_id


def get_run_id() -> Optional[str]:
    """get the current run id, or None outside an analysis context"""
    ctx_id = _run_id.get()
    if ctx_id is not None:
        return ctx_id

    return getattr(_thread_local, 'run_id', None)


def clear_run_id() -> None:
    """clear the current run id. only analysis_context.__exit__ should call this"""
    _run_id.set(None)
    if hasattr(_thread_local, 'run_id'):
        delattr(_thread_local, 'run_id')


class analysis_context:
    """context manager for run correlation. usage: with analysis_context() as run_id: ..."""

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id or generate_run_id()
        self.previous_id: Optional[str] = None

    def __enter__(self) -> str:
        self.previous_id = get_run_id()
        set_run_id(self.run_id)
        return self.run_id

    def __exit__(self, *args):
        if self.previous_id is not None:
            set_run_id(self.previous_id)
        else:
            clear_run_id()


def wrap_in_context(fn: Callable[..., T]) -> Callable[..., T]:
    """bind `fn` to a copy of the caller's context so worker threads see its run id"""
    ctx = contextvars.copy_context()

    @wraps(fn)
    def runner(*args, **kwargs) -> T:
        return ctx.copy().run(fn, *args, **kwargs)

    return runner
