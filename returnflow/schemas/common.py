from decimal import Decimal
from typing import Annotated, Optional

import bleach
from pydantic import PlainSerializer

# Major-unit amount; always a JSON number on the wire
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def clean_text(value: Optional[str], max_length: int = 1000) -> Optional[str]:
    """Strip markup and surrounding whitespace from free text."""
    if value is None:
        return value
    sanitized = bleach.clean(value, tags=[], attributes={}, strip=True).strip()
    if len(sanitized) > max_length:
        raise ValueError(f"Text too long (max {max_length} chars)")
    return sanitized
