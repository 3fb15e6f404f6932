"""
FastAPI server for the Twilio realtime voice bridge.

Endpoints:
- GET /health: Health check
- GET /metrics: JSON metrics
- GET|POST /twiml: Generate TwiML for the Twilio voice webhook
- WS /call: Twilio Media Streams WebSocket (telephony leg)
- WS /logs: Monitoring WebSocket (observer leg)
- GET /tools: Function schemas exposed to the AI backend
- GET /api/session, /api/cart/{session_id}, /api/orders/{session_id}
- /admin/config: Model, voice and system prompt selection
- /admin/functions/{name}: Function schema overrides
"""

import asyncio
import sys

# 2025 Performance: Use uvloop for faster asyncio (Linux only)
try:
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
except ImportError:
    pass  # uvloop not available on Windows

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING, Dict, Any, Optional
import logging
from xml.sax.saxutils import quoteattr

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
import structlog
import uvicorn

from src.voice_bridge.config import Config, get_config, init_config, ConfigError

if TYPE_CHECKING:
    from src.voice_bridge.assistant_settings import AssistantSettings
    from src.voice_bridge.restaurant_tools import RestaurantBackend
    from src.voice_bridge.session import SessionManager
    from src.voice_bridge.tool_registry import ToolRegistry


# Initialize structured logging
def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Set log level
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

logger = structlog.get_logger(__name__)


@dataclass
class ServerMetrics:
    """Server-wide metrics."""
    start_time: float = field(default_factory=time.time)
    total_calls: int = 0
    active_calls: int = 0
    total_observers: int = 0
    active_observers: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "total_calls": self.total_calls,
            "active_calls": self.active_calls,
            "total_observers": self.total_observers,
            "active_observers": self.active_observers,
            "errors": self.errors,
        }


# Global metrics
metrics = ServerMetrics()


@dataclass
class BridgeServices:
    config: Config
    settings: "AssistantSettings"
    backend: "RestaurantBackend"
    registry: "ToolRegistry"
    manager: "SessionManager"


@lru_cache(maxsize=1)
def get_services() -> BridgeServices:
    """
    Build the bridge's long-lived collaborators.

    Cached like `get_config()`; tests clear both caches.
    """
    from src.voice_bridge import FunctionCallDispatcher, SessionManager
    from src.voice_bridge.assistant_settings import AssistantSettings
    from src.voice_bridge.restaurant_tools import create_restaurant_tools

    config = get_config()
    settings = AssistantSettings(config)
    backend, registry = create_restaurant_tools()
    manager = SessionManager(
        config=config,
        settings=settings,
        dispatcher=FunctionCallDispatcher(registry),
        backend=backend,
    )
    return BridgeServices(config=config, settings=settings, backend=backend, registry=registry, manager=manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting voice bridge server...")

    try:
        # Initialize and validate configuration
        config = init_config()
        configure_logging(config.log_level)

        services = get_services()
        logger.info(
            "Server ready",
            port=config.port,
            public_host=config.public_host,
            call_ws_url=config.call_ws_url,
            model=services.settings.model.id,
            tools=len(services.registry),
        )

    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)
    except SystemExit:
        raise
    except Exception as e:
        logger.error("Startup failed", error=str(e))
        sys.exit(1)

    yield

    # Shutdown
    logger.info("Shutting down server...")
    await get_services().manager.shutdown()


# Create FastAPI app
app = FastAPI(
    title="Realtime Voice Bridge",
    description="Bridges Twilio phone calls to a realtime AI speech backend",
    version="1.0.0",
    lifespan=lifespan,
)


class PromptUpdate(BaseModel):
    prompt: str = Field(min_length=1)


class ModelUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str = Field(alias="modelId", min_length=1)


class VoiceUpdate(BaseModel):
    voice: str = Field(min_length=1)


class FunctionSchemaUpdate(BaseModel):
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": time.time(),
            "active_calls": metrics.active_calls,
        }
    )


@app.get("/metrics")
async def get_metrics() -> JSONResponse:
    """Metrics endpoint."""
    return JSONResponse(content=metrics.to_dict())


@app.post("/twiml")
@app.get("/twiml")
async def generate_twiml(request: Request) -> Response:
    """
    Generate TwiML for the Twilio voice webhook.

    Records the caller and dialled numbers for the CallSid so order
    confirmations can fall back to them, then connects the call's media
    stream to /call.
    """
    config = get_config()

    if request.method == "POST":
        params = dict(await request.form())
    else:
        params = dict(request.query_params)

    call_sid = str(params.get("CallSid") or "")
    if call_sid:
        get_services().backend.call_context.set_participants(
            call_sid,
            str(params.get("From") or "") or None,
            str(params.get("To") or "") or None,
        )

    twiml = f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Connect>
        <Stream url={quoteattr(config.call_ws_url)} />
    </Connect>
</Response>"""

    logger.info("Generated TwiML", ws_url=config.call_ws_url, call_sid=call_sid or None)

    return Response(
        content=twiml,
        media_type="application/xml",
    )


@app.websocket("/call")
async def call_websocket(websocket: WebSocket) -> None:
    """
    Twilio Media Streams WebSocket endpoint (telephony leg).

    Only one call is active at a time; a new connection replaces the old one.
    """
    await websocket.accept()
    manager = get_services().manager

    metrics.total_calls += 1
    metrics.active_calls += 1

    await manager.attach_telephony(websocket)
    logger.info("Call WebSocket connected", active_calls=metrics.active_calls)

    try:
        while True:
            try:
                message = await websocket.receive_text()
                await manager.handle_telephony_message(websocket, message)

            except WebSocketDisconnect:
                logger.info("Call WebSocket disconnected")
                break
            except RuntimeError as e:
                # Starlette raises RuntimeError when receiving on a closed socket.
                logger.info("Call WebSocket closed", error=str(e))
                break
            except Exception as e:
                logger.error("Error handling call message", error=str(e))
                metrics.errors += 1
                # Continue processing - don't crash on single message error
                continue

    finally:
        try:
            await manager.detach_telephony(websocket)
        except Exception as e:
            logger.error("Error tearing down call", error=str(e))
            metrics.errors += 1

        metrics.active_calls -= 1
        logger.info("Call ended", active_calls=metrics.active_calls)


@app.websocket("/logs")
async def logs_websocket(websocket: WebSocket) -> None:
    """Monitoring WebSocket endpoint (observer leg)."""
    await websocket.accept()
    manager = get_services().manager

    metrics.total_observers += 1
    metrics.active_observers += 1

    await manager.attach_observer(websocket)

    try:
        while True:
            try:
                message = await websocket.receive_text()
                await manager.handle_observer_message(websocket, message)
            except WebSocketDisconnect:
                break
            except RuntimeError:
                break
    finally:
        await manager.detach_observer(websocket)
        metrics.active_observers -= 1
        logger.info("Observer disconnected", active_observers=metrics.active_observers)


@app.get("/tools")
async def list_tools() -> JSONResponse:
    return JSONResponse(content=get_services().registry.schemas())


@app.get("/api/session")
async def current_session() -> JSONResponse:
    session = get_services().manager.session
    if session is None:
        return JSONResponse(content={"active": False})
    return JSONResponse(content={"active": True, **session.to_public_dict()})


@app.get("/api/cart/{session_id}")
async def get_cart(session_id: str) -> JSONResponse:
    cart = get_services().backend.carts.get_cart(session_id)
    if cart is None:
        return JSONResponse(content={"sessionId": session_id, "items": [], "total": 0, "itemCount": 0})
    return JSONResponse(
        content={
            "sessionId": session_id,
            "items": [item.to_dict() for item in cart.items],
            "total": cart.total,
            "itemCount": cart.item_count,
        }
    )


@app.get("/api/orders/{session_id}")
async def get_orders(session_id: str) -> JSONResponse:
    orders = get_services().backend.orders.orders_for_session(session_id)
    return JSONResponse(content={"sessionId": session_id, "orders": [order.to_dict() for order in orders]})


@app.get("/admin/config")
async def get_admin_config() -> JSONResponse:
    from src.voice_bridge.assistant_settings import AVAILABLE_VOICES
    from src.voice_bridge.models import AVAILABLE_MODELS

    settings = get_services().settings
    return JSONResponse(
        content={
            "model": settings.model.to_dict(),
            "voice": settings.voice,
            "systemPrompt": settings.system_prompt,
            "availableModels": [model.to_dict() for model in AVAILABLE_MODELS],
            "availableVoices": list(AVAILABLE_VOICES),
        }
    )


@app.post("/admin/config/prompt")
async def update_prompt(body: PromptUpdate) -> JSONResponse:
    settings = get_services().settings
    if not settings.set_system_prompt(body.prompt):
        return JSONResponse(status_code=400, content={"error": "Prompt must not be empty"})
    return JSONResponse(content={"success": True, "systemPrompt": settings.system_prompt})


@app.delete("/admin/config/prompt")
async def reset_prompt() -> JSONResponse:
    settings = get_services().settings
    settings.reset_system_prompt()
    return JSONResponse(content={"success": True, "systemPrompt": settings.system_prompt})


@app.post("/admin/config/model")
async def update_model(body: ModelUpdate) -> JSONResponse:
    settings = get_services().settings
    if not settings.set_model(body.model_id):
        return JSONResponse(status_code=400, content={"error": f"Unknown model: {body.model_id}"})
    return JSONResponse(content={"success": True, "model": settings.model.to_dict()})


@app.post("/admin/config/voice")
async def update_voice(body: VoiceUpdate) -> JSONResponse:
    settings = get_services().settings
    if not settings.set_voice(body.voice):
        return JSONResponse(status_code=400, content={"error": f"Unknown voice: {body.voice}"})
    return JSONResponse(content={"success": True, "voice": settings.voice})


@app.put("/admin/functions/{name}")
async def update_function_schema(name: str, body: FunctionSchemaUpdate) -> JSONResponse:
    schema = get_services().registry.update_schema(
        name,
        description=body.description,
        parameters=body.parameters,
    )
    if schema is None:
        return JSONResponse(status_code=404, content={"error": f"Unknown function: {name}"})
    return JSONResponse(content=schema)


@app.delete("/admin/functions/{name}")
async def reset_function_schema(name: str) -> JSONResponse:
    schema = get_services().registry.reset_schema(name)
    if schema is None:
        return JSONResponse(status_code=404, content={"error": f"Unknown function: {name}"})
    return JSONResponse(content=schema)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
    )
    metrics.errors += 1

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def main() -> None:
    """Run the server."""
    config = get_config()
    configure_logging(config.log_level)

    logger.info("Starting server", port=config.port)

    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
