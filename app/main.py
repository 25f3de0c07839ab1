"""
app.main
~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import meeting_ws, room_endpoints
from app.core.config import settings
from app.core.errors import MeetingError
from app.core.logging import get_logger, setup_logging
from app.core.rate_limit import limiter
from app.llm.summarizer import MeetingNotesSummarizer
from app.schemas.api_response import ApiResponse
from app.services.connection import ConnectionHub
from app.services.dispatcher import FanOutDispatcher
from app.services.meeting_notes import MeetingNotesTrigger
from app.services.meeting_service import MeetingService
from app.services.reactions import ReactionLedger
from app.services.room_registry import RoomRegistry
from app.services.transcription import DeepgramTranscriber
from app.services.translation import TranslationGateway
from app.services.voice_directory import VoiceDirectory

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    registry = RoomRegistry(message_limit=settings.ROOM_MESSAGE_LIMIT)
    hub = ConnectionHub()
    translator = TranslationGateway()
    transcriber = DeepgramTranscriber()
    notes = MeetingNotesTrigger(
        registry,
        hub,
        translator,
        MeetingNotesSummarizer(),
        threshold=settings.MEETING_NOTES_MESSAGE_THRESHOLD,
    )
    dispatcher = FanOutDispatcher(registry, hub, translator)

    app.state.room_registry = registry
    app.state.connection_hub = hub
    app.state.translator = translator
    app.state.meeting_notes = notes
    app.state.meeting_service = MeetingService(
        registry=registry,
        hub=hub,
        dispatcher=dispatcher,
        notes=notes,
        reactions=ReactionLedger(registry, hub),
        transcriber=transcriber,
        voices=VoiceDirectory.from_file(settings.voice_mapping_path),
        word_threshold=settings.SPEAKING_WORD_THRESHOLD,
    )
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    await dispatcher.lanes.drain()
    await notes.wait_idle()
    await translator.aclose()
    await transcriber.aclose()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="多语言实时会议室后端 API",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

# ── 限流 ──────────────────────────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(room_endpoints.router, prefix="/api", tags=["Rooms"])
app.include_router(meeting_ws.router, tags=["WebSocket Meeting"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(MeetingError)
async def meeting_error_handler(request: Request, exc: MeetingError) -> JSONResponse:
    """领域异常映射为对应的 HTTP 状态码（404 / 409 / 400 / 502）。"""
    logger.info("请求失败: %s %s -> %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.code,
        content=ApiResponse.from_error(exc).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(
        status_code=500,
        content=response.model_dump(),
    )


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。

    Returns:
        包含服务状态信息的 JSON 响应。
    """
    registry: RoomRegistry = request.app.state.room_registry
    hub: ConnectionHub = request.app.state.connection_hub
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug,
            "log_level": settings.effective_log_level,
            "rooms": len(registry),
            "connections": hub.online_count,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
