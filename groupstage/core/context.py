"""
Explicit per-request caller context.

Built once from the bearer token and handed to every engine operation;
nothing in the engine reads the caller from ambient state.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    user_id: str
    username: Optional[str] = None

    @property
    def actor(self) -> str:
        return self.username or self.user_id
