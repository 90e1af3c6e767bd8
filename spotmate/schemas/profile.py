from typing import List, Optional
from pydantic import BaseModel, Field


class InterestsRequest(BaseModel):
    interests: List[str]
    name: Optional[str] = Field(None, max_length=80)


class FlagRequest(BaseModel):
    enabled: bool
