"""HTTP API for the operator and the agent.

    GET  /status     - resource status + heartbeat state
    GET  /ledger     - recent ledger entries
    POST /reward     - credit an owner reward
    GET  /decisions  - recent decisions
    POST /decisions  - the agent reports a decision
    GET  /tasks      - registered heartbeat tasks
"""

from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from pulsekeeper.commands import record_reward
from pulsekeeper.decisions import ActionType, Decision, DecisionAction
from pulsekeeper.service import LoopService

router = APIRouter()


def get_service(request: Request) -> LoopService:
    return request.app.state.service


class RewardRequest(BaseModel):
    """Owner reward in tokens."""
    amount: int | str
    description: str = ""


class ActionModel(BaseModel):
    type: ActionType = ActionType.OTHER
    description: str
    success: bool = True


class DecisionRequest(BaseModel):
    """A decision reported by the agent after a wake."""
    trigger: str
    reasoning: str
    context: str = ""
    actions: list[ActionModel] = Field(default_factory=list)
    outcome: str | None = None
    tokens_used: int | None = Field(None, ge=0)


@router.get("/status")
async def status(service: LoopService = Depends(get_service)):
    """Snapshot of the ledger (without history) and the heartbeat."""
    return {
        "ledger": service.ledger.snapshot(),
        "heartbeat": {
            "running": service.scheduler.is_running,
            "tick": service.scheduler.tick_count,
            "tasks": len(service.registry),
        },
        "report": service.status_report(),
    }


@router.get("/ledger")
async def ledger(
    count: int = Query(10, ge=1, le=500),
    service: LoopService = Depends(get_service),
):
    """Most recent ledger entries, in the configured order."""
    return {
        "entries": [e.to_dict() for e in service.ledger.recent_entries(count)],
        "report": service.ledger_report(count),
    }


@router.post("/reward")
async def reward(req: RewardRequest, service: LoopService = Depends(get_service)):
    result = record_reward(service.ledger, req.amount, req.description)
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.text)
    return {
        "message": result.text,
        "balance": service.ledger.state.balance.token_credits,
        "tier": service.ledger.tier.value,
    }


@router.get("/decisions")
async def list_decisions(
    count: int = Query(10, ge=1, le=200),
    service: LoopService = Depends(get_service),
):
    return {"decisions": [d.to_dict() for d in service.decisions.get_recent(count)]}


@router.post("/decisions")
async def log_decision(req: DecisionRequest, service: LoopService = Depends(get_service)):
    """Append a decision. The tier is stamped from the live ledger."""
    decision = Decision(
        trigger=req.trigger,
        reasoning=req.reasoning,
        context=req.context,
        actions=[DecisionAction(a.type, a.description, a.success) for a in req.actions],
        outcome=req.outcome,
        tokens_used=req.tokens_used,
        tier=service.ledger.tier.value,
    )
    decision_id = service.decisions.log(decision)
    return {"id": decision_id, "timestamp": decision.timestamp}


@router.get("/tasks")
async def tasks(service: LoopService = Depends(get_service)):
    return {
        "tasks": [
            {"name": t.name, "interval_ticks": t.interval_ticks, "status": t.status}
            for t in service.list_tasks()
        ]
    }


def create_app(service: LoopService) -> FastAPI:
    """App that starts the service with the server and stops it on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(title="pulsekeeper", lifespan=lifespan)
    app.state.service = service
    app.include_router(router)
    return app
