from toolchat.logging_config import get_logger
from toolchat.services.tool_catalog import ToolCatalog
from toolchat.services.usage_service import UsageLedger

logger = get_logger("cost_governor")


class CostCeilingExceededError(Exception):
    def __init__(self, tool_id: str, ceiling: float):
        self.tool_id = tool_id
        self.ceiling = ceiling
        self.message = f"Tool {tool_id} has exceeded its daily cost limit of ${ceiling}"
        super().__init__(self.message)


class CostGovernor:
    """Chooses between a tool's primary and fallback model based on today's spend."""

    def __init__(self, ledger: UsageLedger, catalog: ToolCatalog):
        self.ledger = ledger
        self.catalog = catalog

    async def select_model(self, tool_id: str, original_model: str) -> str:
        try:
            today_cost = await self.ledger.today_cost(tool_id)
            tool = await self.catalog.get_tool(tool_id)
            if tool is None:
                return original_model
            if not tool.ceiling_enabled:
                return original_model

            # Ceilings are inclusive: reaching the limit exactly already downgrades.
            if today_cost >= tool.cost_ceiling:
                if tool.fallback_model:
                    logger.info(
                        f"Downgrading {tool_id} to {tool.fallback_model}",
                        extra={"context": {"today_cost": today_cost, "ceiling": tool.cost_ceiling}},
                    )
                    return tool.fallback_model
                raise CostCeilingExceededError(tool_id, tool.cost_ceiling)
            return original_model
        except CostCeilingExceededError:
            raise
        except Exception as exc:
            logger.warning(
                "Model selection failed, using original model",
                extra={"context": {"tool_id": tool_id, "error": str(exc)}},
            )
            return original_model
