from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from leadcrm.api.routes import router as api_router
from leadcrm.core.config import get_settings
from leadcrm.logging import configure_logging
from leadcrm.middleware.correlation_id import CorrelationIdMiddleware
from leadcrm.middleware.rate_limit import LeadMutationRateLimitMiddleware
from leadcrm.middleware.request_logging import RequestLoggingMiddleware
from leadcrm.otel import get_fastapi_server_request_hook, setup_otel
from leadcrm.security.policies import DbPolicyBackend, InMemoryPolicyBackend, set_policy_backend


configure_logging()
logger = logging.getLogger("leadcrm.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("system_started", extra={"status": get_settings().app_env})
    yield
    logger.info("system_stopped")


def _select_policy_backend() -> None:
    settings = get_settings()
    choice = settings.authz_policy_backend.lower()
    if choice == "auto":
        choice = "db" if settings.app_env.lower() in {"prod", "production"} else "inmemory"
    set_policy_backend(DbPolicyBackend() if choice == "db" else InMemoryPolicyBackend())


app = FastAPI(title="Lead CRM API", version="0.1.0", lifespan=lifespan)
app.add_middleware(LeadMutationRateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

_select_policy_backend()

if get_settings().otel_enabled:
    setup_otel("leadcrm-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
