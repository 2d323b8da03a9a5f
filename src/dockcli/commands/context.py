"""``context show``."""

from ..command import CommandContext


async def run_show(ctx: CommandContext) -> str:
    """Print the name of the current context."""
    name = ctx.current_context
    ctx.out.write(name + "\n")
    return name
