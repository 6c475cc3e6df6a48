from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ...utils.service_health import ProductServiceHealthChecker, component_check

router = APIRouter()


async def _bus_unavailable() -> bool:
    return False


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """Report inventory store and event bus status"""
    state = request.app.state
    checker = ProductServiceHealthChecker(
        state.settings.SERVICE_NAME, state.settings.APP_VERSION
    )

    checker.add_check(
        "store", component_check("store", state.database_manager.health_check)
    )
    infrastructure = getattr(state, "event_infrastructure", None)
    checker.add_check(
        "bus",
        component_check(
            "bus", infrastructure.health_check if infrastructure else _bus_unavailable
        ),
    )

    report = await checker.run_checks()
    status_code = 200 if report["status"] == "healthy" else 503
    return JSONResponse(status_code=status_code, content=report)
