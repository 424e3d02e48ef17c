from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from syntaxstate.config import settings
from syntaxstate.utils.logging import configure_logging
from syntaxstate.db import client as mongo
from syntaxstate.db.ai_log_repository import AILogRepository
from syntaxstate.routers.account import router as account_router
from syntaxstate.routers.admin import router as admin_router
from syntaxstate.routers.assistant import router as assistant_router
from syntaxstate.routers.billing import router as billing_router
from syntaxstate.routers.deps import QuotaExceededError
from syntaxstate.routers.interviews import router as interviews_router
from syntaxstate.routers.learning_paths import router as learning_paths_router
from syntaxstate.routers.webhooks import router as webhooks_router
from syntaxstate.utils.audit import auditor
from syntaxstate.utils.feature_gate import FeatureNotAvailableError
from syntaxstate.services.ai_logger import ai_logger
from syntaxstate.services.llm_service import llm_service
from syntaxstate.services.stream_store import configure_stream_store


configure_logging()
auditor.configure(settings.analytics_path)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	db = mongo.get_db()
	try:
		await mongo.ensure_indexes(db)
	except Exception as e:
		# The API still serves pricing and health without Mongo
		logger.error("Could not ensure MongoDB indexes: %s", e)
	store = configure_stream_store(settings.redis_url)
	ai_logger.configure(AILogRepository(db))
	yield
	await store.close()
	mongo.close()


app = FastAPI(title="SyntaxState Backend", version="0.1.0", lifespan=lifespan)

# CORS
app.add_middleware(
	CORSMiddleware,
	allow_origins=settings.cors_allow_origins,
	# Wildcard origins require credentials to be False under the CORS rules
	allow_credentials=False if settings.cors_allow_origins == ["*"] else True,
	allow_methods=["*"],
	allow_headers=["*"],
	expose_headers=["X-Stream-Id", "X-Stream-Resumed", "X-Cached-Activity", "X-Conversation-Id", "X-New-Conversation", "X-Model-Id"],
	max_age=3600,
)


@app.exception_handler(FeatureNotAvailableError)
async def feature_not_available(request: Request, exc: FeatureNotAvailableError) -> JSONResponse:
	return JSONResponse(status_code=403, content={"error": str(exc), "required_plan": exc.required_plan})


@app.exception_handler(QuotaExceededError)
async def quota_exceeded(request: Request, exc: QuotaExceededError) -> JSONResponse:
	return JSONResponse(status_code=429, content={"error": str(exc), "remaining": 0, "limit": exc.limit})


@app.get("/health")
async def health() -> JSONResponse:
	return JSONResponse({
		"status": "ok",
		"version": app.version,
		"llm": {"provider": settings.llm_provider, "enabled": llm_service.enabled}
	})


# Routers
app.include_router(interviews_router, prefix="/api", tags=["interviews"])
app.include_router(learning_paths_router, prefix="/api", tags=["learning-paths"])
app.include_router(assistant_router, prefix="/api", tags=["assistant"])
app.include_router(billing_router, prefix="/api", tags=["billing"])
app.include_router(webhooks_router, prefix="/api", tags=["webhooks"])
app.include_router(account_router, prefix="/api", tags=["account"])
app.include_router(admin_router, prefix="/api", tags=["admin"])


if __name__ == "__main__":
	import uvicorn

	uvicorn.run("syntaxstate.main:app", host=settings.host, port=settings.port)
