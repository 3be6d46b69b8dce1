from typing import Iterable, Optional

from loguru import logger

from .errors import AccessDeniedError


class ApprovalGate:
    """Checks actors against the statically configured admin set."""

    def __init__(self, privileged_ids: Iterable[str]):
        self.privileged_ids = frozenset(str(i).strip() for i in privileged_ids if str(i).strip())

    def is_privileged(self, actor_id: Optional[str]) -> bool:
        return actor_id is not None and str(actor_id).strip() in self.privileged_ids

    def require(self, actor_id: Optional[str], action: str) -> None:
        if not self.is_privileged(actor_id):
            logger.warning(f"Access denied: actor {actor_id!r} attempted {action}")
            raise AccessDeniedError(
                f"Actor is not allowed to {action.replace('_', ' ')}",
                actor_id=actor_id, action=action,
            )
