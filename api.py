from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
import uvicorn
from typing import List, Optional
import logging
from dataclasses import asdict

import config
from interfaces import ConcurrentUpdateError, DogNotFoundError, RunNotFoundError
from level_engine import compare_level_strategies
from models import RunValidationError
from persistence import Persistence
from progress_report import build_dog_progress, build_user_summary, dog_progress_to_dict
from progression_rules import NoRulesDefinedError
from recalculate import RecalculationError, recalculate_dog_levels
import run_service

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Agility Qs API", version="1.0.0")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_store: Optional[Persistence] = None


def get_store() -> Persistence:
    """Lazy-init the shared store (SQLite or Postgres per config)."""
    global _store
    if _store is None:
        _store = Persistence()
    return _store


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class DogClassBody(BaseModel):
    name: str
    level: Optional[str] = None


class CreateDogBody(BaseModel):
    name: str
    registered_name: str = ""
    classes: List[DogClassBody] = []


class UpdateDogBody(BaseModel):
    name: Optional[str] = None
    registered_name: Optional[str] = None
    active: Optional[bool] = None
    classes: Optional[List[DogClassBody]] = None


class CreateRunBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dog_id: str
    date: str
    competition_class: str = Field(alias="class")
    level: str
    qualified: bool = False
    placement: Optional[int] = None
    time: Optional[float] = None
    mach_points: Optional[int] = None
    location: str = ""
    notes: str = ""


class UpdateRunBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: Optional[str] = None
    competition_class: Optional[str] = Field(default=None, alias="class")
    level: Optional[str] = None
    qualified: Optional[bool] = None
    placement: Optional[int] = None
    time: Optional[float] = None
    mach_points: Optional[int] = None
    location: Optional[str] = None
    notes: Optional[str] = None


def _dog_or_404(store: Persistence, dog_id: str):
    try:
        return run_service.get_dog_or_raise(store, dog_id)
    except DogNotFoundError:
        raise HTTPException(status_code=404, detail="Dog not found")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "Agility Qs API", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "agility-qs"}


@app.get("/stats")
def get_stats(store: Persistence = Depends(get_store)):
    return store.get_db_stats()


@app.post("/dogs", status_code=201)
def create_dog(body: CreateDogBody, store: Persistence = Depends(get_store)):
    try:
        dog = run_service.create_dog(
            store, body.name, [(c.name, c.level) for c in body.classes],
            registered_name=body.registered_name,
        )
    except RunValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "data": dog.to_dict()}


@app.get("/dogs")
def list_dogs(active_only: bool = False, store: Persistence = Depends(get_store)):
    dogs = store.list_dogs(active_only=active_only)
    return {"dogs": [d.to_dict() for d in dogs], "total_count": len(dogs)}


@app.get("/dogs/{dog_id}")
def get_dog(dog_id: str, store: Persistence = Depends(get_store)):
    return _dog_or_404(store, dog_id).to_dict()


@app.put("/dogs/{dog_id}")
def update_dog(dog_id: str, body: UpdateDogBody, store: Persistence = Depends(get_store)):
    """Rename, (de)activate, or replace the class list; class changes trigger a recalculation."""
    classes = None
    if body.classes is not None:
        classes = [(c.name, c.level) for c in body.classes]
    try:
        dog, recalculated = run_service.update_dog(
            store, dog_id, name=body.name, registered_name=body.registered_name,
            active=body.active, classes=classes,
        )
    except RunValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DogNotFoundError:
        raise HTTPException(status_code=404, detail="Dog not found")
    except (ConcurrentUpdateError, RecalculationError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {
        "success": True,
        "data": dog.to_dict(),
        "recalculated": recalculated.to_dict() if recalculated else None,
    }


@app.delete("/dogs/{dog_id}")
def delete_dog(dog_id: str, store: Persistence = Depends(get_store)):
    if not store.delete_dog(dog_id):
        raise HTTPException(status_code=404, detail="Dog not found")
    return {"success": True, "message": "Dog deleted successfully"}


@app.get("/dogs/{dog_id}/runs")
def get_dog_runs(
    dog_id: str,
    competition_class: Optional[str] = None,
    level: Optional[str] = None,
    qualified: Optional[bool] = None,
    order: str = "desc",
    limit: Optional[int] = None,
    offset: int = 0,
    store: Persistence = Depends(get_store),
):
    _dog_or_404(store, dog_id)
    runs = store.list_runs(
        dog_id=dog_id, competition_class=competition_class, level=level,
        qualified=qualified, order=order, limit=limit, offset=offset,
    )
    return {"runs": [r.to_dict() for r in runs], "total_count": len(runs)}


@app.get("/dogs/{dog_id}/levels")
def get_dog_levels(dog_id: str, store: Persistence = Depends(get_store)):
    """Diagnostic view: persisted levels next to both level computations."""
    dog = _dog_or_404(store, dog_id)
    runs = store.get_runs_for_dog(dog_id)
    classes = [c.competition_class for c in dog.classes]
    starting_levels = {c.competition_class: c.starting_level for c in dog.classes if c.starting_level}
    compared = compare_level_strategies(runs, classes, starting_levels)
    return {
        "dog_id": dog.id,
        "persisted": {c.competition_class: c.level for c in dog.classes},
        "ordered_history": {cls: r["ordered_history"].to_dict() for cls, r in compared.items()},
        "thresholds_ever_met": {cls: r["thresholds_ever_met"].to_dict() for cls, r in compared.items()},
    }


@app.post("/dogs/{dog_id}/recalculate")
def recalculate(dog_id: str, store: Persistence = Depends(get_store)):
    try:
        result = recalculate_dog_levels(store, dog_id)
    except DogNotFoundError:
        raise HTTPException(status_code=404, detail="Dog not found")
    except (RecalculationError, NoRulesDefinedError) as e:
        logger.error(f"Recalculation failed for dog {dog_id}: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    return {"success": True, "data": result.to_dict()}


@app.get("/runs")
def list_runs(
    dog_id: Optional[str] = None,
    competition_class: Optional[str] = None,
    level: Optional[str] = None,
    qualified: Optional[bool] = None,
    order: str = "desc",
    limit: Optional[int] = None,
    offset: int = 0,
    store: Persistence = Depends(get_store),
):
    """All runs across dogs, newest first unless order=asc."""
    runs = store.list_runs(
        dog_id=dog_id, competition_class=competition_class, level=level,
        qualified=qualified, order=order, limit=limit, offset=offset,
    )
    return {"runs": [r.to_dict() for r in runs], "total_count": len(runs)}


@app.post("/runs", status_code=201)
def create_run(body: CreateRunBody, store: Persistence = Depends(get_store)):
    """Record a run; includes a `progression` block when the dog leveled up."""
    try:
        run, event = run_service.record_run(
            store, body.dog_id, body.date, body.competition_class, body.level,
            qualified=body.qualified, placement=body.placement, time=body.time,
            mach_points=body.mach_points, location=body.location, notes=body.notes,
        )
    except RunValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DogNotFoundError:
        raise HTTPException(status_code=404, detail="Dog not found")

    response = {"success": True, "data": run.to_dict()}
    if event is not None:
        response["progression"] = event.to_dict()
        response["message"] = event.message
    return response


@app.put("/runs/{run_id}")
def update_run(run_id: str, body: UpdateRunBody, store: Persistence = Depends(get_store)):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        run, recalculated = run_service.edit_run(store, run_id, **changes)
    except RunValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    except RecalculationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {
        "success": True,
        "data": run.to_dict(),
        "recalculated": recalculated.to_dict() if recalculated else None,
    }


@app.delete("/runs/{run_id}")
def delete_run(run_id: str, store: Persistence = Depends(get_store)):
    try:
        result = run_service.remove_run(store, run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    except RecalculationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"success": True, "message": "Run deleted successfully", "recalculated": result.to_dict()}


@app.get("/progress/dog/{dog_id}")
def get_dog_progress(dog_id: str, store: Persistence = Depends(get_store)):
    dog = _dog_or_404(store, dog_id)
    report = build_dog_progress(dog, store.get_runs_for_dog(dog_id))
    return dog_progress_to_dict(report)


@app.get("/progress")
def get_all_progress(store: Persistence = Depends(get_store)):
    reports = [
        dog_progress_to_dict(build_dog_progress(dog, store.get_runs_for_dog(dog.id)))
        for dog in store.list_dogs(active_only=True)
    ]
    return {"progress": reports, "total_count": len(reports)}


@app.get("/progress/summary")
def get_progress_summary(store: Persistence = Depends(get_store)):
    dogs = store.list_dogs()
    runs_by_dog = {d.id: store.get_runs_for_dog(d.id) for d in dogs}
    summary = build_user_summary(dogs, runs_by_dog)
    return asdict(summary)


if __name__ == "__main__":
    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
