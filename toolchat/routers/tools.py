from typing import List

from fastapi import APIRouter, Depends

from toolchat.dependencies import ServiceContainer, get_container
from toolchat.routers.common import error_response
from toolchat.schemas.tool import Tool

router = APIRouter(prefix="/tools", tags=["tools"])


@router.get("", response_model=List[Tool])
async def list_tools(container: ServiceContainer = Depends(get_container)):
    return await container.catalog.list_tools()


@router.get("/{tool_id}", response_model=Tool)
async def get_tool(tool_id: str, container: ServiceContainer = Depends(get_container)):
    tool = await container.catalog.get_tool(tool_id)
    if tool is None or not tool.is_active:
        return error_response(404, f"Tool not found: {tool_id}")
    return tool
