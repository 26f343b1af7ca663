from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from schoolrecords.api.v1.dissolutions.registry import registry
from schoolrecords.api.v1.dissolutions.router import router as dissolutions_router
from schoolrecords.api.v1.sections.router import router as sections_router
from schoolrecords.api.v1.subjects.router import router as subjects_router
from schoolrecords.core.config import settings
from schoolrecords.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # in-memory workflows do not survive a restart; release their catalog tasks and clients
    await registry.close_all()


def create_app() -> FastAPI:
    setup_logging(settings)
    app = FastAPI(title="School Records Backend", lifespan=lifespan)

    # CORS: the admin UI calls this API from another origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(sections_router)
    app.include_router(subjects_router)
    app.include_router(dissolutions_router)

    return app


app = create_app()
