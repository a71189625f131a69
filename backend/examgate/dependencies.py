"""
Request-scoped dependencies shared by the route factories.

Repositories and services are built once in the application lifespan and
kept on ``app.state``; handlers pull them in through these dependencies.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from fastapi import Depends, HTTPException, Request

from .config.settings import Settings
from .models import User
from .repositories import Repositories
from .services import (
    AttemptAllocator,
    CreditService,
    ExamAdminService,
    PublicationGate,
    RegistrationService,
    ScoringEngine,
)

STUDENT_ROLES = ("student",)
ADMIN_ROLES = ("admin", "principal")


@dataclass
class ExamServices:
    registration: RegistrationService
    allocator: AttemptAllocator
    scoring: ScoringEngine
    publication: PublicationGate
    credits: CreditService
    admin: ExamAdminService


def build_services(repos: Repositories, config: Settings) -> ExamServices:
    tz = config.timezone
    keyword = config.FLAGSHIP_TITLE_KEYWORD
    return ExamServices(
        registration=RegistrationService(repos, tz=tz, flagship_keyword=keyword),
        allocator=AttemptAllocator(repos, tz=tz, flagship_keyword=keyword),
        scoring=ScoringEngine(repos),
        publication=PublicationGate(repos, tz=tz),
        credits=CreditService(repos),
        admin=ExamAdminService(repos),
    )


def get_services(request: Request) -> ExamServices:
    return request.app.state.services


def get_now(request: Request) -> datetime:
    """Current time from the application clock."""
    clock: Callable[[], datetime] = request.app.state.clock
    return clock()


async def get_current_user(request: Request, now: datetime = Depends(get_now)) -> User:
    """Get current user from session token"""
    session_token = request.cookies.get("session_token")

    if not session_token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            session_token = auth_header.split(" ")[1]

    if not session_token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    repos: Repositories = request.app.state.repos
    user = await repos.sessions.find_user(session_token, now)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    return User(**user)


async def require_student(user: User = Depends(get_current_user)) -> User:
    if user.role not in STUDENT_ROLES:
        raise HTTPException(status_code=403, detail="Only students can access this")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Only admins can access this")
    return user
