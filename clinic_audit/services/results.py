"""Result types shared by the read-path services."""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class QueryError:
    """Why a read failed. `cause` is the original exception."""
    message: str
    cause: Optional[BaseException] = None
