from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat import routers as chat_router
from .follows import routers as follow_router
from .profiles import routers as profile_router
from .realtime import routers as realtime_router

from .core.errors import add_exception_handlers
from .core.middleware import logging_middleware
from .core.settings import get_settings
from .core.supabase_client import set_supabase
from .utils.logging_config import setup_logging

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # drop the shared client so a restarted loop gets a fresh one
    set_supabase(None)


app = FastAPI(title="linkup", lifespan=lifespan)
app.include_router(profile_router.router, prefix="/profiles", tags=["Profiles"])
app.include_router(follow_router.router, prefix="/follows", tags=["Follows"])
app.include_router(chat_router.router, prefix="/chat", tags=["Chat"])
app.include_router(realtime_router.router, prefix="/realtime", tags=["Realtime"])

add_exception_handlers(app)
app.middleware("http")(logging_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok"}
