from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import yaml

from toolchat.logging_config import get_logger
from toolchat.schemas.tool import Tool
from toolchat.storage.base import KeyValueStore

logger = get_logger("tool_catalog")

_DEFAULT_TOOLS_PATH = Path(__file__).resolve().parents[1] / "knowledge" / "default_tools.yaml"
TOOLS_KEY = "tools-data"


class ToolNotFoundError(Exception):
    def __init__(self, tool_id: str):
        self.tool_id = tool_id
        self.message = f"Tool not found: {tool_id}"
        super().__init__(self.message)


@lru_cache(maxsize=2)
def _load_yaml(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def load_default_tools(path: Path = _DEFAULT_TOOLS_PATH) -> List[Tool]:
    raw_tools = _load_yaml(path).get("tools") or []
    tools = []
    for index, raw in enumerate(raw_tools):
        data = dict(raw)
        data.setdefault("order_index", index)
        tools.append(Tool.model_validate(data))
    return tools


class ToolCatalog:
    """Read-mostly access to tool personas stored under a single key."""

    def __init__(self, store: KeyValueStore, defaults: Optional[List[Tool]] = None):
        self.store = store
        self.defaults = defaults if defaults is not None else load_default_tools()

    async def _load(self) -> List[Tool]:
        try:
            payload = await self.store.get_json(TOOLS_KEY)
        except Exception as exc:
            logger.warning(
                "Tool catalog unavailable, using built-in defaults",
                extra={"context": {"error": str(exc)}},
            )
            return list(self.defaults)

        if not payload:
            await self._save(self.defaults)
            return list(self.defaults)
        return [Tool.model_validate(item) for item in payload]

    async def _save(self, tools: List[Tool]) -> None:
        try:
            await self.store.set_json(TOOLS_KEY, [tool.to_storage() for tool in tools])
        except Exception as exc:
            logger.warning("Failed to persist tool catalog", extra={"context": {"error": str(exc)}})

    async def list_tools(self, active_only: bool = True) -> List[Tool]:
        tools = await self._load()
        if active_only:
            tools = [tool for tool in tools if tool.is_active]
        return sorted(tools, key=lambda tool: tool.order_index)

    async def get_tool(self, tool_id: Optional[str]) -> Optional[Tool]:
        if not tool_id:
            return None
        for tool in await self._load():
            if tool.id == tool_id:
                return tool
        return None

    async def update_tool(self, tool_id: str, **updates) -> Tool:
        tools = await self._load()
        for index, tool in enumerate(tools):
            if tool.id == tool_id:
                updated = tool.model_copy(update=updates)
                tools[index] = Tool.model_validate(updated.model_dump())
                await self._save(tools)
                return tools[index]
        raise ToolNotFoundError(tool_id)
