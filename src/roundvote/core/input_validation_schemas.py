from __future__ import annotations

from pydantic import BaseModel, Field, StrictInt, constr


class GrantRightInput(BaseModel):
    voter: constr(strip_whitespace=True, min_length=1)

class DelegateInput(BaseModel):
    to: constr(strip_whitespace=True, min_length=1)

class VoteInput(BaseModel):
    proposal_index: StrictInt = Field(ge=0)

class OpenRoundInput(BaseModel):
    proposals: list[constr(min_length=1)] = Field(min_length=1)

class RoleTransferInput(BaseModel):
    address: constr(strip_whitespace=True, min_length=1)

class EventQueryInput(BaseModel):
    limit: int = Field(default=100, gt=0)
