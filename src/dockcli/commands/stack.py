"""``stack ps``: tasks of the services in a stack."""

import logging
from typing import Dict, List, Optional

from ..command import CommandContext
from ..core.types import Task
from ..exceptions import DockCliError, InvalidArgumentError, RemoteOperationError

logger = logging.getLogger(__name__)

STACK_NAMESPACE_LABEL = "com.docker.stack.namespace"
SHORT_ID_LENGTH = 12
MAX_ERROR_LENGTH = 30
COLUMN_PADDING = 3

HEADERS = ["ID", "NAME", "IMAGE", "NODE", "DESIRED STATE", "CURRENT STATE", "ERROR"]


def parse_filters(values: Optional[List[str]]) -> Dict[str, List[str]]:
    """Parse repeated "key=value" filter flags.

    Raises:
        InvalidArgumentError: If a value has no '='
    """
    filters: Dict[str, List[str]] = {}
    for value in values or []:
        key, sep, arg = value.partition("=")
        if not sep or not key.strip():
            raise InvalidArgumentError(f"bad format of filter (expected name=value): {value}")
        filters.setdefault(key.strip().lower(), []).append(arg.strip())
    return filters


def stack_filter(namespace: str, filters: Dict[str, List[str]]) -> Dict[str, List[str]]:
    merged = {key: list(values) for key, values in filters.items()}
    merged.setdefault("label", []).append(f"{STACK_NAMESPACE_LABEL}={namespace}")
    return merged


def ellipsis(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 1] + "…"


class IDResolver:
    """Maps service and node IDs to names, caching lookups."""

    def __init__(self, client, no_resolve: bool = False) -> None:
        self.client = client
        self.no_resolve = no_resolve
        self._cache: Dict[tuple, str] = {}

    async def resolve(self, kind: str, object_id: str) -> str:
        if self.no_resolve or not object_id:
            return object_id
        key = (kind, object_id)
        if key in self._cache:
            return self._cache[key]
        try:
            if kind == "service":
                data = await self.client.service_inspect(object_id)
                name = (data.get("Spec") or {}).get("Name") or object_id
            else:
                data = await self.client.node_inspect(object_id)
                name = (data.get("Description") or {}).get("Hostname") or object_id
        except RemoteOperationError as e:
            logger.debug("cannot resolve %s %s: %s", kind, object_id, e)
            name = object_id
        self._cache[key] = name
        return name


async def task_rows(
    tasks: List[Task], resolver: IDResolver, trunc: bool
) -> List[List[str]]:
    rows = []
    for task in tasks:
        service = await resolver.resolve("service", task.service_id)
        node = await resolver.resolve("node", task.node_id)
        name = f"{service}.{task.slot}" if task.slot else f"{service}.{task.node_id}"
        image = task.image
        if trunc:
            image = image.split("@", 1)[0]
        rows.append(
            [
                task.id[:SHORT_ID_LENGTH] if trunc else task.id,
                name,
                image,
                node,
                task.desired_state.capitalize(),
                task.state.capitalize(),
                ellipsis(task.error, MAX_ERROR_LENGTH) if trunc else task.error,
            ]
        )
    return rows


def format_table(headers: List[str], rows: List[List[str]]) -> str:
    widths = [len(header) for header in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))
    lines = []
    for row in [headers] + rows:
        cells = [cell.ljust(widths[i] + COLUMN_PADDING) for i, cell in enumerate(row[:-1])]
        lines.append(("".join(cells) + row[-1]).rstrip())
    return "\n".join(lines) + "\n"


async def run_ps(
    ctx: CommandContext,
    namespace: str,
    filters: Optional[List[str]] = None,
    no_resolve: bool = False,
    no_trunc: bool = False,
    quiet: bool = False,
) -> List[Task]:
    """List the tasks of a stack.

    Raises:
        InvalidArgumentError: If a filter is malformed
        DockCliError: If the stack has no tasks
    """
    task_filter = stack_filter(namespace, parse_filters(filters))
    async with ctx.client() as client:
        tasks = await client.task_list(task_filter)
        if not tasks:
            raise DockCliError(f"nothing found in stack: {namespace}")

        if quiet:
            for task in tasks:
                ctx.out.write((task.id if no_trunc else task.id[:SHORT_ID_LENGTH]) + "\n")
            return tasks

        rows = await task_rows(tasks, IDResolver(client, no_resolve), trunc=not no_trunc)
    ctx.out.write(format_table(HEADERS, rows))
    return tasks
