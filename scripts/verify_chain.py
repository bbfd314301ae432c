"""
Chain Verification Script

Verifies the hash chain of one tenant, or of every tenant, stored in
PostgreSQL. Run it periodically to detect tampering. Exits with status 1
if any chain is broken.
"""

import asyncio
import sys
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from audit_chain.config import get_settings
from audit_chain.database import Database, PostgresAuditStorage
from audit_chain.models import TamperDetectionResult
from audit_chain.services.processor import AuditService


async def verify_tenants(
    database_url: str,
    tenant_id: Optional[str] = None,
    verbose: bool = False
) -> List[Tuple[str, TamperDetectionResult]]:
    """
    Verify chain integrity for one tenant or all tenants.

    Args:
        database_url: PostgreSQL connection URL
        tenant_id: Tenant to verify (all tenants if None)
        verbose: Print progress information

    Returns:
        List of (tenant_id, TamperDetectionResult)
    """
    settings = get_settings().model_copy(update={
        "database_url": database_url,
        "db_pool_min_size": 1,
        "db_pool_max_size": 2,
    })
    db = Database(settings)
    await db.connect()

    try:
        storage = PostgresAuditStorage(db)
        service = AuditService(storage, settings)

        tenants = [tenant_id] if tenant_id else await storage.list_tenants()

        results = []
        for tenant in tenants:
            if verbose:
                print(f"Verifying tenant: {tenant}")
            results.append((tenant, await service.verify(tenant)))

        return results

    finally:
        await db.disconnect()


def print_results(results: List[Tuple[str, TamperDetectionResult]]) -> bool:
    """Print verification results. Returns True if every chain is intact."""
    print("\n" + "=" * 60)
    print("CHAIN VERIFICATION RESULTS")
    print("=" * 60)
    print(f"Timestamp: {datetime.now(timezone.utc).isoformat()}")
    print("-" * 60)

    all_valid = True

    for tenant_id, result in results:
        status = "VALID" if result.intact else "INVALID"
        print(f"\nTenant: {tenant_id}")
        print(f"  Status: {status}")
        print(f"  Events checked: {result.events_checked}")

        if not result.intact:
            all_valid = False
            print(f"  Reason: {result.reason}")
            print(f"  Affected events: {len(result.affected_events)}")
            if result.affected_events:
                print(f"  First affected id: {result.affected_events[0]}")

    print("\n" + "=" * 60)
    if not results:
        print("NO TENANTS FOUND")
    elif all_valid:
        print("ALL CHAINS VERIFIED SUCCESSFULLY")
    else:
        print("SOME CHAINS HAVE INTEGRITY ISSUES")
    print("=" * 60 + "\n")

    return all_valid


async def main() -> int:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Verify audit log hash chain integrity"
    )
    parser.add_argument(
        "--database-url",
        default=get_settings().database_url,
        help="PostgreSQL connection URL"
    )
    parser.add_argument(
        "--tenant-id",
        help="Specific tenant to verify (verifies all if not specified)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Print progress information"
    )

    args = parser.parse_args()

    results = await verify_tenants(
        args.database_url,
        tenant_id=args.tenant_id,
        verbose=args.verbose
    )

    return 0 if print_results(results) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
