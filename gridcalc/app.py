import os
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from dotenv import load_dotenv

load_dotenv()

from gridcalc.models import EvaluateResponse, TableData
from gridcalc.evaluator import evaluate_table

HOST = os.getenv("GRIDCALC_HOST", "127.0.0.1")
PORT = int(os.getenv("GRIDCALC_PORT", "3001"))
CORS_ORIGINS = [o.strip() for o in os.getenv("GRIDCALC_CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("GRIDCALC_LOG_LEVEL", "INFO").upper()
DEBUG_TREES = os.getenv("GRIDCALC_DEBUG_TREES", "false").lower() == "true"
MAX_DEPTH = int(os.getenv("GRIDCALC_MAX_DEPTH", "50"))

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)

MALFORMED_DETAIL = "Malformed request: 'data' property is missing or invalid."

app = FastAPI(title="gridcalc")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/evaluate", response_model=EvaluateResponse, response_model_exclude_none=True)
async def evaluate(request: Request):
    """Evaluate every formula in a table snapshot and return the snapshot."""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
        raise HTTPException(status_code=400, detail=MALFORMED_DETAIL)
    try:
        table = TableData(**body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"{MALFORMED_DETAIL} {e.error_count()} validation error(s)")

    logger.info("Evaluate request: %d cells, %d rows, %d columns", len(table.data), table.rows, len(table.columns))
    # each request gets its own graph; evaluation is CPU-bound so keep it off the loop
    result = await run_in_threadpool(evaluate_table, table, max_depth=MAX_DEPTH, debug_trees=DEBUG_TREES)
    return EvaluateResponse(table=result)


if __name__ == "__main__":
    import uvicorn
    logger.info("gridcalc listening at http://%s:%d", HOST, PORT)
    uvicorn.run(app, host=HOST, port=PORT, timeout_keep_alive=5)
