"""Content hash for client/server/ledger parity.

Every copy of the engine must score with the same tables. The hash is shared
by:
- GET /content (clients compare before trusting a local preview)
- spin_processed telemetry content_hash field
- scripts/audit_sim.py CSV content_hash column
"""
import hashlib
import json

from abyss.config import settings
from abyss.logic.content import GameContent, get_content


def get_content_hash(content: GameContent | None = None) -> str:
    """
    Hash of the content tables and session rules.

    Returns 16-char hex hash of the canonical JSON snapshot.
    """
    content = content or get_content()
    snapshot = {
        "content": content.model_dump(mode="json"),
        "spins_per_level": settings.spins_per_level,
        "max_level_discount_percent": settings.max_level_discount_percent,
    }
    canonical = json.dumps(snapshot, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]
