import asyncio
import json
import os
import time
from functools import wraps
from pathlib import Path


def read_json(path: str | Path) -> dict:
    with open(path, "r", encoding="utf-8") as file:
        return json.load(file)


def write_json(path: str | Path, data: dict) -> None:
    """Write JSON through a sibling temp file so readers never see a partial document."""
    path = Path(path)
    tmp = path.with_name(f".{path.name}.tmp")
    with open(tmp, "w", encoding="utf-8") as file:
        json.dump(data, file, indent=2, ensure_ascii=False)
    os.replace(tmp, path)


def retry(
    attempts: int = 3,
    delay: float = 1,
    backoff: bool = True,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
):
    def decorator(func):
        is_async = asyncio.iscoroutinefunction(func)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            for i in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions:
                    if i >= attempts:
                        raise
                    wait = delay * (2 * i) if backoff else delay
                    time.sleep(wait)

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            for i in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if i >= attempts:
                        raise
                    # Rate limited responses back off harder
                    if "429" in str(e):
                        wait = delay * (4 * i)
                    else:
                        wait = delay * (2 * i) if backoff else delay
                    await asyncio.sleep(wait)

        return async_wrapper if is_async else sync_wrapper

    return decorator
