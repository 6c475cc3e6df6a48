"""
Product Service Health Check Utilities
======================================

Runs named async checks against the inventory store and the event bus and
aggregates them into one report.
"""

import time
from typing import Any, Awaitable, Callable, Dict

HealthCheck = Callable[[], Awaitable[Dict[str, Any]]]


class ProductServiceHealthChecker:
    """Product Service specific health checker"""

    def __init__(self, service_name: str = "product-service", version: str = "1.0.0"):
        self.service_name = service_name
        self.version = version
        self.checks: Dict[str, HealthCheck] = {}
        self.start_time = time.time()

    def add_check(self, name: str, check_func: HealthCheck) -> None:
        """Add a health check function"""
        self.checks[name] = check_func

    async def run_checks(self) -> Dict[str, Any]:
        results = {}
        check_start_time = time.time()

        for name, check_func in self.checks.items():
            individual_start = time.time()
            try:
                result = await check_func()
            except Exception as e:
                result = {"status": "error", "error": str(e)}
            result["duration_ms"] = round((time.time() - individual_start) * 1000, 2)
            results[name] = result

        return {
            "service": self.service_name,
            "version": self.version,
            "status": "healthy"
            if all(r.get("status") == "healthy" for r in results.values())
            else "unhealthy",
            "checks": results,
            "total_duration_ms": round((time.time() - check_start_time) * 1000, 2),
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "timestamp": time.time(),
        }


def component_check(component: str, probe: Callable[[], Awaitable[bool]]) -> HealthCheck:
    """Wrap a boolean probe into a health check result"""

    async def check() -> Dict[str, Any]:
        healthy = await probe()
        return {
            "status": "healthy" if healthy else "unhealthy",
            "component": component,
        }

    return check
