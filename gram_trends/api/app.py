"""
API 层 - FastAPI 应用

GramTrends 音频榜单采集 Worker: 健康检查、熔断器状态、运行指标、手动触发
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from gram_trends.agents.orchestrator import get_orchestrator
from gram_trends.api.auth import AuthContext, require_cron_secret
from gram_trends.config.settings import settings
from gram_trends.observability import metrics as obs
from gram_trends.services.scheduler import PipelineScheduler

logger = logging.getLogger(__name__)

# Global singletons
orchestrator = get_orchestrator()
pipeline_scheduler = PipelineScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("GramTrends starting up")
    await orchestrator.startup()
    pipeline_scheduler.start(orchestrator)
    obs.set_app_info(settings.app_name, app.version, settings.env)
    yield
    logger.info("GramTrends shutting down")
    pipeline_scheduler.stop()
    await orchestrator.shutdown()


app = FastAPI(
    title="GramTrends Worker",
    description="TikTok 音频榜单采集与入库",
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    method = request.method
    status_code = 500
    start = time.perf_counter()
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        if path != "/metrics":
            obs.observe_http_request(method, path, status_code, time.perf_counter() - start)


# ===================================================================
# Request Models
# ===================================================================

class PipelineRunRequest(BaseModel):
    force_secondary: bool = Field(default=False, description="Skip the browser and go straight to Proxy Grid")
    use_stale_fallback: bool = Field(default=False, description="Serve the last stored batch if present")


# ===================================================================
# Endpoints
# ===================================================================

@app.get("/health")
async def health_check():
    next_run = pipeline_scheduler.next_run_time()
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.env,
        "pipeline_running": orchestrator.running,
        "scheduler_running": pipeline_scheduler.running,
        "next_run_time": next_run.isoformat() if next_run else None,
        "sources": await orchestrator.acquisition.health_check(),
        "timestamp": int(time.time() * 1000),
    }


@app.get("/api/v1/circuit-state")
async def circuit_state():
    state = orchestrator.get_circuit_state()
    state["timestamp"] = int(time.time() * 1000)
    return state


@app.get("/api/v1/metrics")
async def run_metrics(auth: AuthContext = Depends(require_cron_secret)):
    summary = orchestrator.recorder.snapshot()
    summary["recent_runs"] = await orchestrator.repo.list_pipeline_runs(limit=10)
    return summary


@app.post("/api/v1/pipeline/run")
async def trigger_pipeline(
    req: PipelineRunRequest = PipelineRunRequest(),
    auth: AuthContext = Depends(require_cron_secret),
):
    logger.info("Manual pipeline trigger via %s", auth.auth_method)
    result = await orchestrator.run(
        force_secondary=req.force_secondary,
        use_stale_fallback=req.use_stale_fallback,
        trigger="manual",
    )
    return result.to_dict()


@app.get("/metrics")
async def prometheus_metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
