from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from toolchat.config import Settings
from toolchat.services.chat_service import WebChatHandler
from toolchat.services.cost_governor import CostGovernor
from toolchat.services.link_service import LinkService
from toolchat.services.llm import LLMProvider, OpenAIProvider
from toolchat.services.llm_gateway import LLMGateway
from toolchat.services.mirror_service import CrossChannelMirror
from toolchat.services.rate_limiter import RateLimiters
from toolchat.services.scheduler import DelayedJobScheduler
from toolchat.services.session_service import WhatsAppSessionStore
from toolchat.services.summary_service import SummaryService
from toolchat.services.tool_catalog import ToolCatalog
from toolchat.services.tool_switch import ToolInference
from toolchat.services.usage_service import UsageLedger
from toolchat.services.whatsapp_service import WhatsAppConversationHandler
from toolchat.services.whatsapp_transport import WhatsAppTransport
from toolchat.storage.factory import StoreFactory


@dataclass
class ServiceContainer:
    settings: Settings
    stores: StoreFactory
    catalog: ToolCatalog
    ledger: UsageLedger
    governor: CostGovernor
    provider: LLMProvider
    gateway: LLMGateway
    transport: WhatsAppTransport
    scheduler: DelayedJobScheduler
    summaries: SummaryService
    sessions: WhatsAppSessionStore
    links: LinkService
    mirror: CrossChannelMirror
    inference: ToolInference
    whatsapp: WhatsAppConversationHandler
    chat: WebChatHandler
    rate_limits: RateLimiters

    @classmethod
    def build(
        cls,
        settings: Settings,
        provider: Optional[LLMProvider] = None,
        transport: Optional[WhatsAppTransport] = None,
        stores: Optional[StoreFactory] = None,
        rate_limits: Optional[RateLimiters] = None,
    ) -> "ServiceContainer":
        stores = stores or StoreFactory(settings)
        catalog = ToolCatalog(stores.get("tools"))
        ledger = UsageLedger(stores.get("usage"))
        governor = CostGovernor(ledger, catalog)
        provider = provider or OpenAIProvider(
            settings.openai_api_key,
            default_model=settings.default_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.llm_timeout_seconds,
        )
        gateway = LLMGateway(provider, governor, settings)
        transport = transport or WhatsAppTransport(settings)
        scheduler = DelayedJobScheduler()
        summaries = SummaryService(stores.get("summaries"), gateway)
        sessions = WhatsAppSessionStore(stores.get("whatsapp"), scheduler, summaries, settings)
        links = LinkService(stores.get("sessions"), stores.get("link-codes"), transport, settings)
        mirror = CrossChannelMirror(stores.get("sync"), transport, settings)
        inference = ToolInference(gateway)
        whatsapp = WhatsAppConversationHandler(
            sessions, catalog, gateway, inference, ledger, links, mirror, transport, settings
        )
        chat = WebChatHandler(catalog, gateway, ledger, links, mirror)
        return cls(
            settings=settings,
            stores=stores,
            catalog=catalog,
            ledger=ledger,
            governor=governor,
            provider=provider,
            gateway=gateway,
            transport=transport,
            scheduler=scheduler,
            summaries=summaries,
            sessions=sessions,
            links=links,
            mirror=mirror,
            inference=inference,
            whatsapp=whatsapp,
            chat=chat,
            rate_limits=rate_limits or RateLimiters.from_settings(settings),
        )

    async def aclose(self) -> None:
        await self.scheduler.shutdown()
        await self.provider.aclose()
        await self.transport.aclose()
        await self.rate_limits.aclose()
        self.stores.dispose()


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
