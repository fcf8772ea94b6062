import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import Base, engine, ensure_schema
from .errors import EikenError
from .middleware import SlidingWindowLimiter, install
from .settings import settings
from .routers import health, generation
from .routers import students
from .routers import question_sets
from .routers import questions
from .routers import scores
from .routers import print as print_router

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Eiken Question Generator API")
rate_limiter = SlidingWindowLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_seconds)
install(app, rate_limiter)
# Added last so it wraps the rate limiter and 429s still carry CORS headers
app.add_middleware(
	CORSMiddleware,
	allow_origins=[settings.frontend_url],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(generation.router)
app.include_router(students.router)
app.include_router(question_sets.router)
app.include_router(questions.router)
app.include_router(scores.router)
app.include_router(print_router.router)


@app.exception_handler(EikenError)
async def eiken_error_handler(request: Request, exc: EikenError):
	if exc.status_code >= 500:
		logger.error("%s %s failed: %s", request.method, request.url.path, exc)
	else:
		logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
	return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
	logger.exception("Unhandled error on %s %s", request.method, request.url.path)
	return JSONResponse(status_code=500, content={"error": "サーバー内部エラーが発生しました", "message": str(exc)})


@app.get("/info")
def root():
	return {
		"status": "ok",
		"service": "eiken-question-generator",
		"gemini_configured": bool(settings.gemini_api_key),
		"model": settings.gemini_model,
		"validation_enabled": settings.enable_validation,
	}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	ensure_schema()
	logger.info("Database ready at %s", engine.url.render_as_string(hide_password=True))
