"""
Triage Routing Core - case routing and escalation engine
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from app.core.logging import configure_logging
from app.api.v1 import triage, escalations, track_board
from app.services.notification_service import close_event_sink

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    close_event_sink()


app = FastAPI(
    title="Triage Routing Core API",
    description="ESI validation, responder routing and escalation for emergency triage",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(triage.router, prefix="/v1/triage", tags=["triage"])
app.include_router(escalations.router, prefix="/v1/escalations", tags=["escalations"])
app.include_router(track_board.router, prefix="/v1/track-board", tags=["track-board"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": settings.APP_NAME}


@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": "1.0.0",
        "docs": "/docs"
    }
