"""Chat command handlers.

Every handler is ``async def handler(ctx, inv) -> CommandResult``.
"""
