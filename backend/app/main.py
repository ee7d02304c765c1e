import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api.config import DEFAULT_CORS_ORIGINS, cors_allow_origins
from backend.app.api.routes.cases import router as cases_router
from backend.app.api.routes.me import router as me_router
from backend.app.services.case_access_service import AccessPolicy, AccessScopeResolver


logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    origins = cors_allow_origins()
    if not any(origin in origins for origin in DEFAULT_CORS_ORIGINS):
        logger.warning("CORS allowlist does not include local dev origins: %s", origins)
    return origins


app = FastAPI(title="Case Desk API", version="0.1.0")

# Permission table is fixed for the life of the process; restart to reload.
app.state.case_access_resolver = AccessScopeResolver(AccessPolicy.from_env())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cases_router)
app.include_router(me_router)
