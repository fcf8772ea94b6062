from __future__ import annotations
import logging
from datetime import datetime
from fastapi import APIRouter, Depends
from ..ai_gateway import AIGateway, DailyQuotaCounter
from ..gemini_client import GeminiClient
from ..generation_service import QuestionGenerator
from ..schemas import ApiUsage, GenerationRequest, GenerationResponse, GenerationStatus
from ..settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/generation", tags=["generation"])

# Shared by every request in the process
quota = DailyQuotaCounter(settings.daily_quota_limit, enforce=not settings.disable_quota_check)


def get_quota() -> DailyQuotaCounter:
	return quota


async def get_question_generator(counter: DailyQuotaCounter = Depends(get_quota)):
	client = GeminiClient()
	gateway = AIGateway(
		client,
		counter,
		max_retries=settings.generation_max_retries,
		base_delay=settings.generation_retry_delay_seconds,
		deadline=settings.generation_deadline_seconds or None,
	)
	try:
		yield QuestionGenerator(gateway, enable_validation=settings.enable_validation)
	finally:
		await client.aclose()


@router.post("/generate", response_model=GenerationResponse, response_model_by_alias=True)
async def generate(req: GenerationRequest, generator: QuestionGenerator = Depends(get_question_generator)):
	return await generator.generate(req)


@router.get("/status", response_model=GenerationStatus, response_model_by_alias=True)
def status(counter: DailyQuotaCounter = Depends(get_quota)):
	configured = bool(settings.gemini_api_key)
	snap = counter.snapshot()
	return GenerationStatus(
		status="active" if configured else "error",
		service="Eiken question generation",
		timestamp=datetime.utcnow().isoformat() + "Z",
		model=settings.gemini_model,
		gemini_configured=configured,
		api_key_status="configured" if configured else "missing",
		error=None if configured else "GEMINI_API_KEY is not configured",
		api_usage=ApiUsage(
			daily_count=snap.count,
			daily_limit=snap.limit,
			remaining=snap.remaining,
			validation_enabled=settings.enable_validation,
			reset_date=snap.reset_date.isoformat(),
		),
	)


@router.post("/reset-quota")
def reset_quota(counter: DailyQuotaCounter = Depends(get_quota)):
	counter.reset()
	logger.info("Daily quota counter reset by request")
	return {"message": "APIカウンターをリセットしました", "dailyCount": counter.count, "dailyLimit": counter.limit}
