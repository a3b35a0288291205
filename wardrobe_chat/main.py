import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wardrobe_chat import config
from wardrobe_chat.database.connection import close_mongo_connection, connect_to_mongo, get_database
from wardrobe_chat.repositories.base import ConversationStore
from wardrobe_chat.repositories.conversation_repository import ConversationRepository
from wardrobe_chat.repositories.memory_repository import InMemoryConversationRepository
from wardrobe_chat.repositories.user_repository import InMemoryUserRepository, UserRepository
from wardrobe_chat.routers.chat import router as socket_router
from wardrobe_chat.routers.conversations import router as chats_router
from wardrobe_chat.services.conversation_service import Clock, ConversationService, utcnow
from wardrobe_chat.services.realtime_gateway import RealtimeGateway
from wardrobe_chat.utils.realtime_bus import create_bus


logger = logging.getLogger(__name__)


def _wire(app: FastAPI, store: ConversationStore, users, clock: Clock, bus) -> None:
    service = ConversationService(store, users=users, clock=clock)
    app.state.store = store
    app.state.chat_service = service
    app.state.gateway = RealtimeGateway(service, bus=bus)


def create_app(
    store: Optional[ConversationStore] = None,
    users=None,
    clock: Clock = utcnow,
    bus=None,
) -> FastAPI:
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    bus = bus or create_bus(config.REDIS_URL)
    use_mongo = store is None and config.CHAT_STORE == "mongo"

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if use_mongo:
            await connect_to_mongo()
            db = get_database()
            _wire(app, ConversationRepository(db), UserRepository(db), clock, bus)
        await app.state.store.ensure_indexes()
        try:
            yield
        finally:
            await app.state.gateway.close()
            await bus.close()
            if use_mongo:
                await close_mongo_connection()

    app = FastAPI(title="WardrobeNearby Chat", lifespan=lifespan)
    if not use_mongo:
        _wire(app, store or InMemoryConversationRepository(), users or InMemoryUserRepository(), clock, bus)

    origins = config.cors_allow_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False if origins == ["*"] else True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        logger.info("HTTPException %s request_id=%s detail=%s", exc.status_code, request_id, detail)
        resp = JSONResponse(status_code=exc.status_code, content={"detail": detail, "request_id": request_id})
        resp.headers["X-Request-ID"] = request_id
        return resp

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        logger.exception("Unhandled exception request_id=%s", request_id)
        resp = JSONResponse(status_code=500, content={"detail": "Internal server error", "request_id": request_id})
        resp.headers["X-Request-ID"] = request_id
        return resp

    @app.get("/health")
    async def health():
        return {"status": "ok", "store": type(app.state.store).__name__ if hasattr(app.state, "store") else None}

    app.include_router(chats_router)
    app.include_router(socket_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
