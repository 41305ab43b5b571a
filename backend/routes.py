from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from bunker_actions.models import Category, PlayerActionResult
from bunker_actions.orchestrator import ActionCycleOrchestrator

router = APIRouter()


class ActionBody(BaseModel):
    text: str
    items: list[str] = Field(default_factory=list)


def _orchestrator(request: Request) -> ActionCycleOrchestrator:
    return request.app.state.orchestrator


def _category(name: str) -> Category:
    key = name.replace("_", "").replace("-", "").lower()
    for category in Category:
        if category.value.lower() == key:
            return category
    raise HTTPException(404, f"Unknown category: {name}")


def _dump_result(result: PlayerActionResult) -> dict:
    return result.model_dump(mode="json", by_alias=True)


def _dump_results(results: dict[Category, PlayerActionResult]) -> dict:
    return {c.value: _dump_result(r) for c, r in results.items()}


@router.get("/health")
async def health():
    return {"status": "ok"}


# ── Day ───────────────────────────────────────────────────


@router.get("/day")
async def get_day(request: Request):
    orch = _orchestrator(request)
    state = orch.state
    return {
        "phase": orch.phase.value,
        "pending": orch.pending,
        "state": state.model_dump(mode="json") if state is not None else None,
    }


@router.post("/day/{day}/prepare")
async def prepare_day(day: int, request: Request, force_all: bool = False):
    total = request.app.state.config.total_days
    if not 1 <= day <= total:
        raise HTTPException(404, f"Day {day} is outside 1..{total}")
    try:
        state = _orchestrator(request).prepare_day(day, force_all=force_all)
    except RuntimeError as e:
        raise HTTPException(409, str(e))
    return state.model_dump(mode="json")


# ── Actions ───────────────────────────────────────────────


@router.put("/actions/{category}")
async def save_action(category: str, body: ActionBody, request: Request):
    cat = _category(category)
    if not _orchestrator(request).save_input(cat, body.text, body.items):
        raise HTTPException(409, f"Cannot save input for {cat.value}")
    return {"saved": cat.value}


@router.post("/actions/{category}", status_code=202)
async def submit_action(category: str, body: ActionBody, request: Request, wait: bool = False):
    cat = _category(category)
    orch = _orchestrator(request)
    if not orch.submit(cat, body.text, body.items):
        raise HTTPException(409, f"Submission for {cat.value} rejected")
    if wait:
        results = await orch.wait_until_resolved()
        return _dump_result(results[cat])
    return {"submitted": cat.value, "pending": orch.pending}


@router.post("/actions", status_code=202)
async def submit_all(request: Request, wait: bool = False):
    orch = _orchestrator(request)
    submitted = orch.submit_all()
    response: dict = {"submitted": [c.value for c in submitted]}
    if wait:
        response["results"] = _dump_results(await orch.wait_until_resolved())
    return response


# ── Results ───────────────────────────────────────────────


@router.get("/results")
async def get_results(request: Request):
    return _dump_results(_orchestrator(request).results)


@router.post("/results/{category}/choices/{index}")
async def take_choice(category: str, index: int, request: Request):
    cat = _category(category)
    choice = _orchestrator(request).resolve_choice(cat, index)
    if choice is None:
        raise HTTPException(409, f"Choice {index} for {cat.value} not available")
    return choice.model_dump(mode="json", by_alias=True)


# ── World state ───────────────────────────────────────────


@router.get("/characters")
async def list_characters(request: Request):
    return [
        {**c.model_dump(mode="json"), "status": c.status_summary()}
        for c in request.app.state.characters.all()
    ]


@router.get("/resources")
async def get_resources(request: Request):
    return request.app.state.resources.snapshot()
