"""
FastAPI server for the voice lead agent.

Endpoints:
- GET /health: Health check
- GET /metrics: JSON metrics
- WS /ws: Caller audio WebSocket (binary PCM16 in, JSON + PCM16 out)
"""

import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, Any
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from src.receptionist.config import get_config, init_config, ConfigError


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
    total_connections: int = 0
    active_connections: int = 0
    total_calls: int = 0
    active_calls: int = 0
    audio_frames_received: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "total_connections": self.total_connections,
            "active_connections": self.active_connections,
            "total_calls": self.total_calls,
            "active_calls": self.active_calls,
            "audio_frames_received": self.audio_frames_received,
            "errors": self.errors,
        }


# Global metrics
metrics = ServerMetrics()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting voice lead agent server...")

    try:
        # Initialize and validate configuration
        config = init_config()
        configure_logging(config.log_level)

        if config.validate_model_on_startup:
            from src.receptionist.llm import initialize_llm
            await initialize_llm(config)

        from src.receptionist.availability import AvailabilityCalendar
        from src.receptionist.knowledge_base import KnowledgeBase

        # Shared by every call in this process.
        app.state.calendar = AvailabilityCalendar(
            slot_templates=config.booking_slot_templates,
            default_busy=config.booking_default_busy,
        )
        app.state.knowledge_base = KnowledgeBase.load(config.knowledge_base_path or None)

        logger.info(
            "Server ready",
            port=config.port,
            business_name=config.business_name,
            knowledge_base_entries=len(app.state.knowledge_base),
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


# Create FastAPI app
app = FastAPI(
    title="Voice Lead Agent",
    description="Real-time voice receptionist that answers enquiries and captures bookings",
    version="1.0.0",
    lifespan=lifespan,
)


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


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Caller WebSocket endpoint.

    Binary frames are caller audio; text frames are ignored. The call ends
    only when the socket closes.
    """
    await websocket.accept()

    metrics.total_connections += 1
    metrics.active_connections += 1
    metrics.total_calls += 1
    metrics.active_calls += 1

    call_id = f"call_{int(time.time() * 1000)}"

    logger.info(
        "WebSocket connected",
        call_id=call_id,
        active_calls=metrics.active_calls,
    )

    # Import here to avoid circular imports and speed up startup
    from src.receptionist.caller_protocol import CallerChannel
    from src.receptionist.pipeline import create_pipeline

    pipeline = None
    channel = CallerChannel(send_text=websocket.send_text, send_bytes=websocket.send_bytes)

    try:
        # Create and start pipeline
        pipeline = await create_pipeline(
            channel,
            calendar=websocket.app.state.calendar,
            knowledge_base=websocket.app.state.knowledge_base,
        )

        # Handle incoming messages
        while True:
            try:
                message = await websocket.receive()
                if message.get("type") == "websocket.disconnect":
                    logger.info("WebSocket disconnected", call_id=call_id)
                    break

                data = message.get("bytes")
                if data is None:
                    logger.debug("Ignoring text frame", call_id=call_id)
                    continue

                metrics.audio_frames_received += 1
                await pipeline.handle_audio(data)

            except WebSocketDisconnect:
                logger.info("WebSocket disconnected", call_id=call_id)
                break
            except Exception as e:
                logger.error(
                    "Error handling WebSocket message",
                    call_id=call_id,
                    error=str(e),
                )
                metrics.errors += 1
                # Continue processing - don't crash on single message error
                continue

    except Exception as e:
        logger.error(
            "WebSocket handler error",
            call_id=call_id,
            error=str(e),
        )
        metrics.errors += 1

    finally:
        # Cleanup
        channel.close()
        if pipeline:
            try:
                await pipeline.stop()
            except Exception as e:
                logger.error("Error stopping pipeline", error=str(e))

        metrics.active_connections -= 1
        metrics.active_calls -= 1

        logger.info(
            "Call ended",
            call_id=call_id,
            active_calls=metrics.active_calls,
        )


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
