# amm_indexer/main.py
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging

from amm_indexer.api import api
from amm_indexer.storage.db import get_engine
from amm_indexer.storage.db_utils import create_tables
from amm_indexer.utils.shortname import ShortNameFilter

app = FastAPI(title="AMM indexer")

logging.basicConfig(
    level=logging.INFO,
    format="[%(levelname)s] %(name)s: %(message)s",
)
logging.getLogger().addFilter(ShortNameFilter())
log = logging.getLogger(__name__)


@app.exception_handler(RequestValidationError)
async def invalid_parameters(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


app.include_router(api.router, prefix="/api")


@app.on_event("startup")
def check_db_connection():
    engine = get_engine()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        create_tables(engine)
        log.info("✅ Database connected.")
    except SQLAlchemyError as e:
        log.error(f"❌ DB connection failed: {e}")
