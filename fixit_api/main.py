"""FixIT API Service - issues, helper matching and realtime notifications"""

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import sentry_sdk
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.cron import CronTrigger  # type: ignore
from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.websockets import WebSocketDisconnect
from starlette.status import WS_1008_POLICY_VIOLATION

from fixit_api.auth import (
    AuthenticatedUser,
    AuthenticationError,
    authenticate_websocket,
    get_current_user,
)
from fixit_api.config import settings
from fixit_api.database import create_tables
from fixit_api.models import (
    AssignRequest,
    CommentRequest,
    HealthResponse,
    HelpersData,
    HelpersResponse,
    IssueCategory,
    IssueCreateRequest,
    IssueListResponse,
    IssuePriority,
    IssueResponse,
    IssueUpdateRequest,
    MessageResponse,
    ResolveRequest,
    SkillsUpdateRequest,
    TopContributorsData,
    TopContributorsResponse,
    UserListResponse,
    UserResponse,
    helper_out,
    issue_out,
    user_out,
)
from fixit_api.schedulers import run_auto_close
from fixit_api.services import (
    IssueLifecycleGuard,
    IssuePermissionError,
    IssueStateError,
    IssueStatus,
    rank_helpers,
)
from fixit_api.services.realtime import get_realtime_hub
from fixit_api.services.skill_matcher import required_skill_set
from fixit_api.services.storage_service import (
    ResourceNotFoundError,
    candidate_from_user,
    get_storage_service,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Configure SQLAlchemy logging based on DEBUG_SQL setting
sql_log_level = logging.INFO if settings.debug_sql else logging.WARNING
logging.getLogger("sqlalchemy.engine").setLevel(sql_log_level)
logging.getLogger("sqlalchemy.pool").setLevel(sql_log_level)

# Global services
storage_service = get_storage_service()
realtime_hub = get_realtime_hub()
scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan manager for startup/shutdown tasks"""

    # Initialize Sentry
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            traces_sample_rate=1.0,
            debug=settings.debug,
        )

    logger.info(
        f"Starting up {settings.service_name}({settings.service_version}) service..."
    )

    # Create database tables if they don't exist
    await create_tables()
    logger.info("Database tables ensured")

    scheduler.add_job(
        run_auto_close,
        CronTrigger.from_crontab(settings.auto_close_cron),
        id="auto_close_resolved",
        replace_existing=True,
        max_instances=1,  # Prevent overlapping runs
    )
    scheduler.start()
    logger.info(f"Auto-close scheduled with cron: {settings.auto_close_cron}")

    yield

    logger.info(
        f"Shutting down {settings.service_name}({settings.service_version}) service..."
    )

    await realtime_hub.close_all()
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")


app = FastAPI(
    title="FixIT Helpdesk API",
    description="Support issues, skill-based helper matching and live notifications",
    version=settings.service_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(IssuePermissionError)
async def permission_error_handler(request: Request, exc: IssuePermissionError):
    logger.info(f"Denied '{exc.action}' for user {exc.user_id}: {exc.message}")
    return JSONResponse(status_code=403, content={"success": False, "detail": exc.message})


@app.exception_handler(IssueStateError)
async def state_error_handler(request: Request, exc: IssueStateError):
    logger.info(f"Rejected issue change in status '{exc.current_status}': {exc.message}")
    return JSONResponse(status_code=409, content={"success": False, "detail": exc.message})


@app.exception_handler(ResourceNotFoundError)
async def not_found_handler(request: Request, exc: ResourceNotFoundError):
    return JSONResponse(status_code=404, content={"success": False, "detail": str(exc)})


@app.get("/")
async def root():
    """Root endpoint - service status"""
    return {
        "service": settings.service_name,
        "status": "running",
        "version": settings.service_version,
        "timestamp": datetime.now(UTC).isoformat(),
        "scheduler_active": scheduler.running,
        "connected_users": realtime_hub.connected_user_count(),
    }


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    health_data = await storage_service.health_check()

    return HealthResponse(
        status="healthy" if health_data["database_connected"] else "unhealthy",
        service="fixit_api",
        timestamp=datetime.now(UTC).isoformat(),
        database_connected=health_data["database_connected"],
        total_users=health_data["total_users"],
        total_issues=health_data["total_issues"],
        connected_users=realtime_hub.connected_user_count(),
    )


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------


async def _require_issue(issue_id: str):
    issue = await storage_service.get_issue(issue_id)
    if issue is None:
        raise ResourceNotFoundError("Issue", issue_id)
    return issue


@app.get("/issues", response_model=IssueListResponse)
async def list_issues(
    status: IssueStatus | None = None,
    priority: IssuePriority | None = None,
    category: IssueCategory | None = None,
    search: str | None = None,
    exclude_posted_by: str | None = Query(default=None, alias="excludePostedBy"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
):
    """List issues with optional filters"""
    issues = await storage_service.list_issues(
        status=status.value if status else None,
        priority=priority.value if priority else None,
        category=category.value if category else None,
        search=search,
        exclude_posted_by=exclude_posted_by,
        limit=limit,
        offset=offset,
    )
    return IssueListResponse(count=len(issues), data=[issue_out(i) for i in issues])


@app.post("/issues", response_model=IssueResponse, status_code=201)
async def create_issue(
    request: IssueCreateRequest, user: AuthenticatedUser = Depends(get_current_user)
):
    """File a new issue owned by the caller"""
    fields = request.model_dump(exclude={"location"})
    fields["category"] = request.category.value
    fields["priority"] = request.priority.value
    fields.update(request.location.model_dump())

    issue = await storage_service.create_issue(user.user_id, fields)
    return IssueResponse(data=issue_out(issue))


@app.get("/issues/{issue_id}", response_model=IssueResponse)
async def get_issue(issue_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    issue = await _require_issue(issue_id)
    return IssueResponse(data=issue_out(issue))


@app.put("/issues/{issue_id}", response_model=IssueResponse)
async def update_issue(
    issue_id: str,
    request: IssueUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Edit an issue (owner only, not once resolved or closed)"""
    changes = request.model_dump(exclude_unset=True, exclude={"location"})
    if request.category is not None:
        changes["category"] = request.category.value
    if request.priority is not None:
        changes["priority"] = request.priority.value
    if request.location is not None:
        changes.update(request.location.model_dump())

    issue = await storage_service.update_issue(issue_id, user.user_id, changes)
    return IssueResponse(data=issue_out(issue))


@app.delete("/issues/{issue_id}", response_model=MessageResponse)
async def delete_issue(issue_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    """Delete an issue (owner only, not once resolved or closed)"""
    await storage_service.delete_issue(issue_id, user.user_id)
    return MessageResponse(message="Issue deleted successfully")


@app.get("/issues/{issue_id}/helpers", response_model=HelpersResponse)
async def get_helper_suggestions(
    issue_id: str,
    limit: int = Query(default=settings.helper_suggestion_limit, ge=1, le=50),
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Rank users whose skills overlap the issue's required skills"""
    issue = await _require_issue(issue_id)
    IssueLifecycleGuard.for_issue(issue).ensure_can_suggest_helpers()

    required = required_skill_set(issue.required_skill_list)
    pool = await storage_service.find_helper_pool(issue)
    users_by_id = {str(u.user_id): u for u in pool}

    ranked = rank_helpers(
        required,
        [candidate_from_user(u) for u in pool],
        exclude_user_id=issue.owner_id,
    )[:limit]

    logger.info(
        f"Ranked {len(ranked)} helpers for issue {issue_id} (skills: {required})"
    )
    return HelpersResponse(
        data=HelpersData(
            required_skills=required,
            helpers=[helper_out(users_by_id[h.user_id], h) for h in ranked],
        )
    )


@app.put("/issues/{issue_id}/assign", response_model=IssueResponse)
async def assign_issue(
    issue_id: str,
    request: AssignRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Assign a helper and notify them over the realtime channel"""
    issue = await storage_service.assign_issue(issue_id, user.user_id, request.assigned_to)
    realtime_hub.notify_issue_assigned(
        request.assigned_to, issue.issue_id, issue.title, assigned_by=user
    )
    return IssueResponse(data=issue_out(issue))


@app.put("/issues/{issue_id}/start", response_model=IssueResponse)
async def start_issue(issue_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    """Assignee begins work on the issue"""
    issue = await storage_service.start_issue(issue_id, user.user_id)
    return IssueResponse(data=issue_out(issue))


@app.put("/issues/{issue_id}/resolve", response_model=IssueResponse)
async def resolve_issue(
    issue_id: str,
    request: ResolveRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Mark an issue as solved, crediting the solver"""
    points = (
        request.points_awarded
        if request.points_awarded is not None
        else settings.default_points_awarded
    )
    issue = await storage_service.resolve_issue(
        issue_id, user.user_id, request.solved_by, request.solution, points
    )
    return IssueResponse(data=issue_out(issue))


@app.put("/issues/{issue_id}/close", response_model=IssueResponse)
async def close_issue(issue_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    issue = await storage_service.close_issue(issue_id, user.user_id, is_admin=user.is_admin)
    return IssueResponse(data=issue_out(issue))


@app.post("/issues/{issue_id}/comments", response_model=IssueResponse, status_code=201)
async def add_comment(
    issue_id: str,
    request: CommentRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    issue = await storage_service.add_comment(issue_id, user.user_id, request.content)
    return IssueResponse(data=issue_out(issue))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@app.get("/users", response_model=UserListResponse)
async def list_users(
    skill: str | None = None,
    department: str | None = None,
    search: str | None = None,
    exclude: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    user: AuthenticatedUser = Depends(get_current_user),
):
    """List users; also the widened candidate pool when no helper matches"""
    users = await storage_service.list_users(
        skill=skill,
        department=department,
        search=search,
        exclude_user_id=exclude,
        limit=limit,
    )
    return UserListResponse(count=len(users), data=[user_out(u) for u in users])


@app.get("/users/top-contributors", response_model=TopContributorsResponse)
async def top_contributors(
    limit: int = Query(default=5, ge=1, le=50),
    user: AuthenticatedUser = Depends(get_current_user),
):
    users = await storage_service.get_top_contributors(limit=limit)
    return TopContributorsResponse(
        data=TopContributorsData(top_resolvers=[user_out(u) for u in users])
    )


@app.get("/users/search/skills", response_model=HelpersResponse)
async def search_users_by_skills(
    skills: str = Query(min_length=1),
    limit: int = Query(default=10, ge=1, le=50),
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Rank users for a comma separated list of skills"""
    required = required_skill_set(skills.split(","))
    pool = await storage_service.find_users_by_skills(required)
    users_by_id = {str(u.user_id): u for u in pool}
    ranked = rank_helpers(required, [candidate_from_user(u) for u in pool])[:limit]

    return HelpersResponse(
        data=HelpersData(
            required_skills=required,
            helpers=[helper_out(users_by_id[h.user_id], h) for h in ranked],
        )
    )


@app.get("/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    found = await storage_service.get_user(user_id)
    if found is None:
        raise ResourceNotFoundError("User", user_id)
    return UserResponse(data=user_out(found))


@app.get("/users/{user_id}/issues", response_model=IssueListResponse)
async def get_user_issues(
    user_id: str,
    role: str = Query(default="posted", pattern="^(posted|assigned)$"),
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Issues a user posted, or issues assigned to them"""
    if role == "assigned":
        issues = await storage_service.list_issues(assignee_id=user_id)
    else:
        issues = await storage_service.list_issues(owner_id=user_id)
    return IssueListResponse(count=len(issues), data=[issue_out(i) for i in issues])


@app.put("/users/{user_id}/skills", response_model=UserResponse)
async def update_user_skills(
    user_id: str,
    request: SkillsUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Replace a user's skill profile (self or admin)"""
    if user.user_id != user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="You can only edit your own skills")

    updated = await storage_service.update_user_skills(
        user_id, [(s.name, s.proficiency.value) for s in request.skills]
    )
    return UserResponse(data=user_out(updated))


@app.put("/users/{user_id}/skills/{skill_name}/verify", response_model=UserResponse)
async def verify_user_skill(
    user_id: str, skill_name: str, user: AuthenticatedUser = Depends(get_current_user)
):
    """Verify a user's skill (admin only)"""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can verify skills")

    updated = await storage_service.verify_user_skill(user_id, skill_name, user.user_id)
    return UserResponse(data=user_out(updated))


# ---------------------------------------------------------------------------
# Realtime channel
# ---------------------------------------------------------------------------


@app.websocket("/ws")
async def realtime_channel(websocket: WebSocket):
    """Bind a websocket to the authenticated user and relay their events"""
    try:
        user = authenticate_websocket(websocket)
    except AuthenticationError as e:
        logger.warning(f"Rejected realtime connection: {e}")
        await websocket.close(code=WS_1008_POLICY_VIOLATION)
        return

    conn = await realtime_hub.connect(websocket, user)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                logger.warning(
                    f"Dropping binary frame from user {user.user_id} ({conn.connection_id})"
                )
                continue
            realtime_hub.handle_frame(conn, raw)
    except WebSocketDisconnect:
        logger.debug(f"Realtime connection {conn.connection_id} closed by client")
    finally:
        await realtime_hub.disconnect(conn)


if __name__ == "__main__":
    import uvicorn

    logger.info(
        f"Starting {settings.service_name}({settings.service_version}) on "
        f"{settings.api_host}:{settings.api_port}"
    )
    uvicorn.run(
        "fixit_api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
