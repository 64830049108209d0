"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import credentials, executions, health, triggers, workflows

api_v1_router = APIRouter()

# Health (no auth required)
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Workflows and versions
api_v1_router.include_router(
    workflows.router,
    prefix="/workflows",
    tags=["Workflows"],
)

# Executions
api_v1_router.include_router(
    executions.router,
    prefix="/executions",
    tags=["Executions"],
)

# Triggers
api_v1_router.include_router(
    triggers.router,
    prefix="/triggers",
    tags=["Triggers"],
)

# Webhook receiver
api_v1_router.include_router(
    triggers.webhook_router,
    prefix="/webhooks",
    tags=["Webhooks"],
)

# Credentials
api_v1_router.include_router(
    credentials.router,
    prefix="/credentials",
    tags=["Credentials"],
)
