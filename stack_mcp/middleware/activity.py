"""Treats tool calls as user activity for the adaptive refresh scheduler."""

from fastmcp.server.middleware import Middleware, MiddlewareContext

from ..core.logging_config import get_middleware_logger
from ..core.refresh_scheduler import AdaptiveRefreshScheduler


class ActivityMiddleware(Middleware):
    """Records activity before every tool call so polling returns to its base rate."""

    def __init__(self, scheduler: AdaptiveRefreshScheduler):
        self.scheduler = scheduler
        self.logger = get_middleware_logger()

    async def on_call_tool(self, context: MiddlewareContext, call_next):
        self.scheduler.record_activity()
        self.logger.debug("Activity recorded", tool=getattr(context.message, "name", None))
        return await call_next(context)
