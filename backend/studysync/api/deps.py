"""
Application-wide sync services and their FastAPI dependencies.
"""

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from studysync.core.security import CredentialCipher
from studysync.integrations.portal.session_manager import PortalSessionManager
from studysync.services.notifications import default_notifier
from studysync.services.sync.pipeline import SyncPipeline
from studysync.services.sync.schedule_manager import SyncScheduler


@dataclass
class SyncServices:
    session_manager: PortalSessionManager
    scheduler: SyncScheduler


def build_sync_services(session_factory: async_sessionmaker, user_id: str = "default") -> SyncServices:
    session_manager = PortalSessionManager(
        session_factory,
        cipher=CredentialCipher.from_settings(),
        user_id=user_id,
    )
    pipeline = SyncPipeline(session_manager, session_factory)
    scheduler = SyncScheduler(
        pipeline,
        session_factory,
        notifier=default_notifier(),
        user_id=user_id,
    )
    return SyncServices(session_manager=session_manager, scheduler=scheduler)


def get_session_manager(request: Request) -> PortalSessionManager:
    return request.app.state.sync_services.session_manager


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.sync_services.scheduler
