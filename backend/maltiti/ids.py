from __future__ import annotations

import uuid


def new_id() -> str:
    """String UUID primary key; line items reference batches by this value."""
    return str(uuid.uuid4())
