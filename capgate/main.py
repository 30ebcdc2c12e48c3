from __future__ import annotations

import asyncio
import contextlib
import logging
import math

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import app_context
from .app.feature_gates.exceptions import FeatureGateError
from .app.routes.entitlements import router as entitlements_router
from .app.services.entitlements import bind_usage_dispatcher, get_engine_config
from .usage_queue import PostgresUsageEventSink, UsageEventQueue, create_usage_pool

load_dotenv()

config = get_engine_config()

logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logging.getLogger("capgate").setLevel(config.log_level)
logging.getLogger("usage").setLevel(config.log_level)
logging.getLogger("entitlements").setLevel(config.log_level)

logger = logging.getLogger("capgate.main")

DB_CFG = dict(
    host=config.db_config["host"],
    port=config.db_config["port"],
    dbname=config.db_config["database"],
    user=config.db_config["user"],
    password=config.db_config["password"],
    connect_timeout=int(math.ceil(config.db_connect_timeout)),
)


def get_conn():
    return psycopg2.connect(**DB_CFG)


app_context.configure(get_conn=get_conn)

app = FastAPI(title="Capability Gate API")

app.include_router(entitlements_router)


@app.exception_handler(FeatureGateError)
async def handle_feature_gate_error(request: Request, exc: FeatureGateError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=dict(exc.payload))


@app.on_event("startup")
async def setup_usage_telemetry() -> None:
    loop = asyncio.get_running_loop()
    pool = await create_usage_pool(config)
    sink = PostgresUsageEventSink(pool) if pool is not None else None
    queue = UsageEventQueue.from_config(config, sink=sink, loop=loop)
    app.state.usage_pool = pool
    app.state.usage_queue = queue
    app.state.usage_task = None
    if queue.enabled:
        bind_usage_dispatcher(queue)
        app.state.usage_task = asyncio.create_task(queue.run())
    else:
        logger.info("Usage telemetry disabled; decisions will not be recorded")


@app.on_event("shutdown")
async def teardown_usage_telemetry() -> None:
    task = getattr(app.state, "usage_task", None)
    queue = getattr(app.state, "usage_queue", None)
    pool = getattr(app.state, "usage_pool", None)

    bind_usage_dispatcher(None)

    if queue:
        queue.close()

    if task:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    if queue:
        await queue.flush()

    if pool:
        await pool.close()
