"""Per-channel registry of webhook paths and their handlers."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

RouteHandler = Callable[[Request], Awaitable[Response]]


@dataclass(frozen=True)
class _Route:
    path: str
    handler: RouteHandler
    account_id: str


class WebhookRouteRegistry:
    """Maps request paths to handlers; owned by a single channel instance."""

    def __init__(self) -> None:
        self._routes: dict[str, _Route] = {}

    def register(self, path: str, handler: RouteHandler, account_id: str) -> Callable[[], None]:
        """Bind ``handler`` to ``path`` and return a function that unbinds it.

        The returned function only removes this exact registration, so a
        stale unregister cannot drop a newer handler on the same path.
        """
        previous = self._routes.get(path)
        if previous is not None and previous.account_id != account_id:
            logger.warning(
                "dingtalk[%s] webhook path %s taken over from account %s",
                account_id, path, previous.account_id,
            )
        route = _Route(path=path, handler=handler, account_id=account_id)
        self._routes[path] = route

        def unregister() -> None:
            if self._routes.get(path) is route:
                del self._routes[path]

        return unregister

    def resolve(self, path: str) -> RouteHandler | None:
        route = self._routes.get(path)
        return route.handler if route else None

    def paths(self) -> frozenset[str]:
        return frozenset(self._routes)
