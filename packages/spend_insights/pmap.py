"""Ordered, bounded-concurrency map over a ``ThreadPoolExecutor``.

``p_map(items, mapper, concurrency=N)`` keeps at most ``N`` mapper calls in
flight and returns their results in input order. Two extras over a plain
``pool.map``:

- ``cancel``: a :class:`threading.Event`. Once set, no further items are
  submitted; calls already running finish and keep their results. Items that
  never started are simply absent from the output.
- ``p_map_skip``: a mapper may return this sentinel to drop its element from
  the output without disturbing the order of the rest.

Errors: with ``stop_on_error=True`` (default) the first mapper exception
propagates and unstarted work is cancelled; otherwise all calls run and the
failures are raised together as an ``ExceptionGroup``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "p_map_skip"


p_map_skip: object = _Skip()


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    cancel: threading.Event | None = None,
) -> list[OutT]:
    if not isinstance(concurrency, int) or isinstance(concurrency, bool) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    it = enumerate(iterable)
    results: dict[int, OutT | object] = {}
    errors: list[Exception] = []
    future_to_idx: dict[Future, int] = {}

    def _cancelled() -> bool:
        return cancel is not None and cancel.is_set()

    def _submit(pool: ThreadPoolExecutor) -> Future | None:
        if _cancelled():
            return None
        try:
            idx, item = next(it)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        return fut

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        active: set[Future] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            done, active = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        try:
                            pool.shutdown(wait=False, cancel_futures=True)
                        finally:
                            raise
                    errors.append(e)

            for _ in range(len(done)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)

    out: list[OutT] = []
    for i in sorted(results):
        val = results[i]
        if val is p_map_skip:
            continue
        out.append(val)  # type: ignore[arg-type]
    return out


__all__ = ["p_map", "p_map_skip"]
