import random
import uuid
from datetime import datetime, timezone

def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"

def gen_reference_code(now: datetime | None = None) -> str:
    # Shareable order reference, e.g. ORD-2026482913
    year = (now or datetime.now(timezone.utc)).year
    return f"ORD-{year}{random.randint(100000, 999999)}"
