"""FastAPI service exposing reconciliation as maintenance endpoints.

GET  /health      -> cheap liveness (always ok if process up)
GET  /ready       -> readiness probe (Mongo ping), 503 otherwise
GET  /collections -> names + approximate document counts
GET  /similar     -> similar name pairs
GET  /plan        -> merge plan (dry run)
GET  /verify      -> naming standard report
POST /apply       -> execute the plan; body must carry confirm=true (409 while a run is active)

MongoDB ONLY. The store is a dependency (get_store) so tests can swap it.
"""
import logging
import threading
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Settings, load_settings
from .db import close_db, get_db
from .errors import ConfigError, ReconcileError, StoreConnectionError
from .naming import NamingPolicy
from .planner import build_plan, parse_mapping, plan_from_mapping
from .reconcile import ReconcileExecutor
from .similarity import similar_pairs
from .store import MongoStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

# one reconciliation run at a time per process
_apply_lock = threading.Lock()


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    yield
    close_db()


app = FastAPI(title="collectiondb", version="0.1.0", lifespan=lifespan)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def get_store(settings: Settings = Depends(get_settings)) -> MongoStore:
    try:
        return MongoStore(get_db(settings))
    except StoreConnectionError as e:
        raise HTTPException(status_code=503, detail=f"db_not_ready: {e}")


def require_api_key(
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    settings: Settings = Depends(get_settings),
):
    if settings.api_key and x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True


def _policy(settings: Settings, prefix: Optional[str] = None) -> NamingPolicy:
    prefixes = [p.strip() for p in prefix.split(",") if p.strip()] if prefix else list(settings.prefixes)
    return NamingPolicy(prefixes=prefixes, convention=settings.convention,
                        standard_names=list(settings.standard_names))


def _threshold(settings: Settings, threshold: Optional[float]) -> float:
    if threshold is None:
        return settings.threshold
    if not 0.0 < threshold <= 1.0:
        raise HTTPException(status_code=422, detail="threshold must be in (0, 1]")
    return threshold


@app.exception_handler(ConfigError)
def _config_error(request, exc: ConfigError):
    return JSONResponse(status_code=500, content={"detail": f"config_error: {exc}"})


@app.exception_handler(StoreConnectionError)
def _store_error(request, exc: StoreConnectionError):
    return JSONResponse(status_code=503, content={"detail": f"db_not_ready: {exc}"})


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready(store: MongoStore = Depends(get_store)):
    store.ping()
    return {"status": "ready", "db": store.name}


@app.get("/collections")
def collections(store: MongoStore = Depends(get_store)):
    return {"collections": [{"name": c.name, "documents": c.document_count} for c in store.list_collections()]}


@app.get("/similar")
def similar(threshold: Optional[float] = None, store: MongoStore = Depends(get_store),
            settings: Settings = Depends(get_settings)):
    t = _threshold(settings, threshold)
    return {"threshold": t, "pairs": [p.as_dict() for p in similar_pairs(store.collection_names(), t)]}


@app.get("/plan")
def plan(threshold: Optional[float] = None, prefix: Optional[str] = None,
         store: MongoStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    t = _threshold(settings, threshold)
    return build_plan(store.list_collections(), _policy(settings, prefix), t).as_dict()


@app.get("/verify")
def verify(threshold: Optional[float] = None, prefix: Optional[str] = None,
           store: MongoStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    t = _threshold(settings, threshold)
    return _policy(settings, prefix).verify(store.collection_names(), t).as_dict()


class ApplyReq(BaseModel):
    confirm: bool = False
    threshold: Optional[float] = None
    prefix: Optional[str] = None
    mapping: Optional[dict] = None
    skip_existing: bool = True


@app.post("/apply")
def apply(req: ApplyReq, _auth: bool = Depends(require_api_key),
          store: MongoStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    if not req.confirm:
        raise HTTPException(status_code=400, detail="confirm_required")
    if not _apply_lock.acquire(blocking=False):
        raise HTTPException(status_code=409, detail="apply_in_progress")
    try:
        t = _threshold(settings, req.threshold)
        collections_now = store.list_collections()
        try:
            if req.mapping is not None:
                merge_plan = plan_from_mapping(collections_now, parse_mapping(req.mapping))
            else:
                merge_plan = build_plan(collections_now, _policy(settings, req.prefix), t)
        except ReconcileError as e:
            raise HTTPException(status_code=400, detail=str(e))
        logger.info(f"apply requested ops={len(merge_plan.operations)} db={store.name}")
        result = ReconcileExecutor(store, skip_existing=req.skip_existing).apply(merge_plan)
    finally:
        _apply_lock.release()
    return {"plan": merge_plan.as_dict(), "result": result.as_dict()}
