"""Single-shot collection endpoint for an external scheduler."""

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ttc_speed_cache.collector import CollectionDriver
from ttc_speed_cache.models import CollectResponse
from ttc_speed_cache.timeutil import iso_from_ms, now_ms, utc_from_ms
from ttc_speed_cache.trigger_auth import authorize

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["collect"])


def _get_settings():
    from ttc_speed_cache.config import settings

    return settings


def _request_url(request: Request) -> str:
    """Rebuild the URL the scheduler signed (scheme and host as seen by the proxy)."""
    proto = request.headers.get("x-forwarded-proto", "https")
    host = request.headers.get("host")
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return f"{proto}://{host}{path}" if host else path


@router.api_route("/collect-sample", methods=["GET", "POST"])
async def collect_sample(request: Request):
    body = await request.body()
    if not authorize(request.headers, _request_url(request), body, _get_settings()):
        logger.warning("Rejected unauthorized collect request")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    started = time.monotonic()
    driver: CollectionDriver = request.app.state.driver
    try:
        result = await driver.run_cycle()
    except Exception as e:
        logger.exception("Collect request failed")
        failed = CollectResponse(
            success=False,
            timestamp=iso_from_ms(now_ms()),
            message="Collection failed",
            execution_time_ms=int((time.monotonic() - started) * 1000),
            error=str(e) or type(e).__name__,
        )
        return JSONResponse(failed.model_dump(by_alias=True), status_code=500)

    cycle_time = utc_from_ms(result.as_of_ms)
    response = CollectResponse(
        success=result.success,
        timestamp=iso_from_ms(result.as_of_ms),
        message=result.message,
        date_key=cycle_time.strftime("%Y-%m-%d"),
        time_key=cycle_time.strftime("%H%M"),
        records_collected=result.records_collected,
        speeds_location=result.speeds_location,
        routes_location=result.routes_location,
        execution_time_ms=int((time.monotonic() - started) * 1000),
        error=result.error,
    )

    # A batch that was collected but not stored is a server failure;
    # an empty feed is reported as a normal, unsuccessful sample.
    status_code = 500 if result.records_collected and not result.success else 200
    return JSONResponse(response.model_dump(by_alias=True), status_code=status_code)
