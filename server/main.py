"""FastAPI WebSocket server for the card table."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from connections import Connection
from handlers import MessageRouter
from logging_config import setup_logging
from persistence import GameStore
from registry import GameRegistry
from routers.health import router as health_router
from routers.health import set_health_dependencies

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


store = GameStore(config.GAME_CONFIG_DIR, config.GAME_STATE_DIR)
registry = GameRegistry(store=store, deck_settings=config.deck)
message_router = MessageRouter(registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load saved games, then start the message loop."""
    await registry.load()
    await message_router.start()
    set_health_dependencies(registry=registry, store=store)

    logger.info(f"Card table server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await message_router.stop()
    await _close_all_websockets()
    logger.info("Shutdown complete")


async def _close_all_websockets():
    """Close all open WebSocket connections gracefully."""
    for connection in registry.connections:
        try:
            await connection.websocket.close(code=1001, reason="Server shutting down")
        except Exception as e:
            logger.debug(f"Closing {connection} failed: {e}")
    logger.info("All WebSocket connections closed")


app = FastAPI(
    title="Card Table",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health_router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    connection = Connection(websocket)
    logger.debug(f"WebSocket connected as {connection.id}")

    await message_router.submit_opened(connection)
    try:
        while True:
            data = await websocket.receive_text()
            await message_router.submit(connection, data)
    except WebSocketDisconnect:
        logger.debug(f"WebSocket {connection.id} disconnected")
    finally:
        await message_router.submit_closed(connection)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting card table server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
