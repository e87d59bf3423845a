"""FastAPI dependencies for the categorization engine."""
from fastapi import Request

from ledgersort.di.container import EngineContext
from ledgersort.services.orchestrator import Orchestrator


def get_engine(request: Request) -> EngineContext:
    return request.app.state.engine


def get_orchestrator(request: Request) -> Orchestrator:
    return get_engine(request).orchestrator()
