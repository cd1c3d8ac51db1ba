from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from toolchat.config import settings
from toolchat.dependencies import ServiceContainer
from toolchat.logging_config import get_logger, setup_logging
from toolchat.routers import admin, chat, link, sync, tools, usage, whatsapp

setup_logging(settings.log_level)
logger = get_logger("main")

app = FastAPI(
    title="ToolChat API",
    description="Multi-channel tool-persona chat service for web and WhatsApp",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(whatsapp.router)
app.include_router(chat.router)
app.include_router(link.router)
app.include_router(sync.router)
app.include_router(usage.router)
app.include_router(tools.router)
app.include_router(admin.router)


@app.on_event("startup")
async def start_services() -> None:
    if getattr(app.state, "container", None) is None:
        app.state.container = ServiceContainer.build(settings)
        logger.info("Services started", extra={"context": {"storage": settings.storage_backend}})


@app.on_event("shutdown")
async def stop_services() -> None:
    container = getattr(app.state, "container", None)
    if container is None:
        return
    await container.aclose()
    app.state.container = None
    logger.info("Services stopped")


@app.get("/health")
async def health():
    return {"status": "ok", "storage": settings.storage_backend}
