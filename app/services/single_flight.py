from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Hashable


class SingleFlight:
    """
    Collapses concurrent calls for the same key into one in-flight call.

    The first caller runs `fn`; callers arriving while it is in flight await
    the same outcome (result or exception). Nothing is cached once the call
    completes, so the next caller starts a fresh call.

    Scope is one event loop in one process.
    """

    def __init__(self) -> None:
        self._calls: dict[Hashable, asyncio.Future] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._calls

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Any:
        existing = self._calls.get(key)
        if existing is not None:
            # shield: a cancelled follower must not cancel the leader's future
            return await asyncio.shield(existing)

        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._calls[key] = fut
        try:
            result = await fn()
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as e:
            fut.set_exception(e)
            # mark retrieved so an unawaited future doesn't log "exception never retrieved"
            fut.exception()
            raise
        else:
            fut.set_result(result)
            return result
        finally:
            self._calls.pop(key, None)
