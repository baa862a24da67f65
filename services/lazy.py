from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")

UNSET = "unset"
EVALUATING = "evaluating"
SET = "set"
FAILED = "failed"


class _Cell(Generic[T]):
    def __init__(self):
        self._status = UNSET
        self._value: Optional[T] = None
        self._error: Optional[BaseException] = None

    @property
    def status(self) -> str:
        return self._status

    @property
    def evaluated(self) -> bool:
        return self._status in (SET, FAILED)

    def _begin(self):
        if self._status == EVALUATING:
            raise RuntimeError("Lazy value is already being evaluated")
        self._status = EVALUATING

    def _resolve(self, value: T):
        self._value = value
        self._status = SET

    def _fail(self, error: BaseException):
        self._error = error
        self._status = FAILED

    def _cached(self) -> T:
        if self._status == FAILED:
            raise self._error
        return self._value


class Lazy(_Cell[T]):
    """Compute-once cell around a zero-argument callable.

    The first call runs the callable and caches either its value or the
    exception it raised; every later call returns the value or re-raises the
    same exception without running the callable again.
    """

    def __init__(self, f: Callable[[], T]):
        super().__init__()
        self._f: Optional[Callable[[], T]] = f

    def __call__(self) -> T:
        if self.evaluated:
            return self._cached()
        self._begin()
        try:
            value = self._f()
        except Exception as e:
            self._fail(e)
        except BaseException:
            self._status = UNSET
            raise
        else:
            self._resolve(value)
        self._f = None
        return self._cached()


class AsyncLazy(_Cell[T]):
    """Compute-once cell around a coroutine function, see ``Lazy``."""

    def __init__(self, f: Callable[[], Awaitable[T]]):
        super().__init__()
        self._f: Optional[Callable[[], Awaitable[T]]] = f

    async def __call__(self) -> T:
        if self.evaluated:
            return self._cached()
        self._begin()
        try:
            value = await self._f()
        except Exception as e:
            self._fail(e)
        except BaseException:
            self._status = UNSET
            raise
        else:
            self._resolve(value)
        self._f = None
        return self._cached()


def constant(value: Any) -> Lazy:
    cell = Lazy(lambda: value)
    cell()
    return cell
