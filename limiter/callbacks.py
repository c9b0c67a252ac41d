"""
Denial routing shared by both limiters.
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from shared.errors import LimitExceeded

DenyCallback = Callable[[str], Union[Any, Awaitable[Any]]]


async def resolve(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it."""
    if inspect.isawaitable(value):
        return await value
    return value


async def deny(callback: Optional[DenyCallback], error: LimitExceeded) -> Any:
    """Return the callback's result for a saturated resource, or raise ``error``."""
    if callback is not None:
        return await resolve(callback(error.name))
    raise error
