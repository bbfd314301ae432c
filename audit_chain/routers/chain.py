"""
Chain endpoints - integrity verification and signed checkpoints.
"""

import logging

from fastapi import APIRouter, Depends
from prometheus_client import Counter

from audit_chain.dependencies import get_audit_service, get_checkpoint_signer
from audit_chain.models import ChainCheckpoint, TamperDetectionResult
from audit_chain.services.checkpoint import CheckpointSigner
from audit_chain.services.processor import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tenants/{tenant_id}", tags=["chain"])

chain_verifications = Counter(
    'audit_chain_verifications_total',
    'Chain verifications by result',
    ['result']
)


@router.post("/verify", response_model=TamperDetectionResult)
async def verify_chain(
    tenant_id: str,
    service: AuditService = Depends(get_audit_service)
):
    """
    Verify the hash chain integrity for a tenant.

    A broken chain is a normal 200 response with `intact: false`, the
    reason, and every event from the first broken record onward.
    """
    result = await service.verify(tenant_id)

    chain_verifications.labels(result="intact" if result.intact else "broken").inc()

    return result


@router.post("/checkpoint", response_model=ChainCheckpoint)
async def create_checkpoint(
    tenant_id: str,
    service: AuditService = Depends(get_audit_service),
    signer: CheckpointSigner = Depends(get_checkpoint_signer)
):
    """
    Issue a signed checkpoint of the tenant's chain head and length.

    Returns 501 when no signing key is configured.
    """
    return await service.checkpoint(tenant_id, signer)
