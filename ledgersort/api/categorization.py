"""Categorization API endpoints.

- Categorize one record or a batch
- Learn from user corrections
- Decay unused patterns
- Inspect metrics and health
- Reconfigure the running engine
"""
from datetime import timedelta
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ledgersort.di.container import EngineContext
from ledgersort.models.requests import (
    BatchCategorizeRequest,
    ConfigUpdateRequest,
    DecayRequest,
    LearnRequest,
    RecordInput,
)
from ledgersort.models.results import CategorizationResult
from ledgersort.services.errors import ConfigError, to_http_exception
from ledgersort.services.explanations import explain_confidence, summarize_alternatives
from ledgersort.services.orchestrator import Orchestrator
from ledgersort.api.deps import get_engine, get_orchestrator

router = APIRouter(prefix="/v1/categorization", tags=["categorization"])


def _result_payload(result: CategorizationResult) -> Dict[str, Any]:
    payload = result.to_dict()
    if result.successful:
        payload["explanation"] = explain_confidence(result.confidence, result.confidence_breakdown, result.usage_count)
        payload["alternatives_summary"] = summarize_alternatives(result.alternatives)
    return payload


@router.post("/categorize")
async def categorize(request: RecordInput, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Categorize a single record. Engine failures come back as ``status: error``."""
    result = orchestrator.categorize(request.to_record())
    return _result_payload(result)


@router.post("/batch")
async def batch_categorize(
    request: BatchCategorizeRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    results = orchestrator.batch_categorize([record.to_record() for record in request.records])
    return {
        "results": [_result_payload(result) for result in results],
        "count": len(results),
    }


@router.post("/learn")
async def learn(request: LearnRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """
    Learn from user corrections.

    Each correction names the category the user chose and, optionally, the
    category the engine had predicted.
    """
    corrections = [
        {
            "record": correction.record.to_record(),
            "correct_category": correction.correct_category,
            "predicted_category": correction.predicted_category,
        }
        for correction in request.corrections
    ]
    return orchestrator.batch_learn(corrections).to_dict()


@router.post("/decay")
async def decay(request: DecayRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    result = orchestrator.decay_unused_patterns(
        inactivity_threshold=timedelta(days=request.inactivity_days),
        decay_factor=request.decay_factor,
    )
    return result.to_dict()


@router.get("/metrics")
async def metrics(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.metrics()


@router.get("/health")
async def health(engine: EngineContext = Depends(get_engine)):
    orchestrator = engine.orchestrator()
    store_ok = engine.repository.healthy()
    engine_ok = orchestrator.healthy()
    return {
        "status": "healthy" if store_ok and engine_ok else "degraded",
        "pattern_store": "ok" if store_ok else "unavailable",
        "circuit_breaker": orchestrator.breaker.state.value,
    }


@router.put("/config")
async def update_config(request: ConfigUpdateRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        config = orchestrator.configure(**request.options)
    except ConfigError as e:
        raise to_http_exception(e)
    return {"config": config.model_dump()}
