import asyncio
import random
from typing import Any, Callable, Iterable, List, Sequence


async def run_in_threads(
    func: Callable[..., Any],
    args_list: Iterable[Sequence[Any]],
    max_concurrency: int = 5,
    jitter_seconds: float = 0.0,
) -> List[Any]:
    """
    Run a sync function 'func' over a list/iterable of argument sequences concurrently
    using asyncio.to_thread, bounded by max_concurrency. Each call waits a random
    delay in [0, jitter_seconds) before starting. Returns results in order; the first
    exception propagates.
    """
    sem = asyncio.Semaphore(max(1, max_concurrency))

    async def _run_one(args: Sequence[Any]) -> Any:
        async with sem:
            if jitter_seconds > 0:
                await asyncio.sleep(random.random() * jitter_seconds)
            return await asyncio.to_thread(func, *args)

    tasks = [asyncio.create_task(_run_one(args)) for args in args_list]
    try:
        return await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()


def chunked(seq: Sequence[Any], size: int) -> List[Sequence[Any]]:
    if size < 1:
        raise ValueError("size must be >= 1")
    return [seq[idx : idx + size] for idx in range(0, len(seq), size)]
