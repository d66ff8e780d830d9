from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.pipeline.orchestrator import Orchestrator
from app.repositories.document_repository import DocumentRepository
from app.repositories.document_repository_interface import IDocumentRepository
from app.services.agent_service import AgentService


def get_orchestrator(request: Request) -> Orchestrator:
    """The process-wide orchestrator built in the app lifespan."""
    return request.app.state.orchestrator


def get_document_repository(
    db: AsyncSession = Depends(get_db),
) -> IDocumentRepository:
    return DocumentRepository(db)


def get_agent_service(
    orchestrator: Orchestrator = Depends(get_orchestrator),
    repository: IDocumentRepository = Depends(get_document_repository),
) -> AgentService:
    return AgentService(orchestrator, repository)


def get_agent_health_service(
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> AgentService:
    # Status reads never touch the database
    return AgentService(orchestrator)
