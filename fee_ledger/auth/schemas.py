from typing import Dict, List
from uuid import UUID

from pydantic import BaseModel, Field


class CurrentUser(BaseModel):
    """Authenticated actor as asserted by the identity provider's token.
    student_ids lists the students a parent may act for; empty for staff.
    """

    id: UUID
    role: str
    permissions: Dict[str, Dict[str, bool]] = Field(default_factory=dict)
    student_ids: List[UUID] = Field(default_factory=list)
