"""
FastAPI dependencies for the audit service and checkpoint signer.
"""

from typing import Optional

from fastapi import HTTPException, Request

from audit_chain.services.checkpoint import CheckpointSigner
from audit_chain.services.processor import AuditService
from audit_chain.storage import AuditStorage


async def get_audit_service(request: Request) -> AuditService:
    """Dependency injection for the audit service."""
    return request.app.state.audit_service


async def get_storage(request: Request) -> AuditStorage:
    """Dependency injection for the audit store."""
    return request.app.state.audit_service.storage


async def get_checkpoint_signer(request: Request) -> CheckpointSigner:
    """Dependency injection for the checkpoint signer; 501 when none is configured."""
    signer: Optional[CheckpointSigner] = request.app.state.checkpoint_signer
    if signer is None:
        raise HTTPException(status_code=501, detail="Checkpoint signing is not configured")
    return signer
