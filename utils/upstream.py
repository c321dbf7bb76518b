import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class UpstreamResult:
    """Outcome of one upstream call: either a value or the reason it is unavailable."""
    success: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, value) -> "UpstreamResult":
        return cls(success=True, value=value)

    @classmethod
    def unavailable(cls, error: str) -> "UpstreamResult":
        return cls(success=False, error=error)


def guarded(call, *args, **kwargs) -> UpstreamResult:
    """Run an upstream call, turning anything it raises into an unavailable result."""
    try:
        return call(*args, **kwargs)
    except Exception as e:
        logger.error(f"Upstream call {getattr(call, '__name__', call)} raised: {str(e)}")
        return UpstreamResult.unavailable(str(e))
