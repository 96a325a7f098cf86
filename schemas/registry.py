from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, StrictStr


class RegistryCredentialRequest(BaseModel):
    registry: StrictStr = Field(..., min_length=1)
    username: StrictStr = Field(..., min_length=1)
    password: StrictStr = Field(..., min_length=1)


class RegistryCredentialRead(BaseModel):
    # ORM 속성명은 registry_name
    registry: str = Field(..., validation_alias="registry_name")
    username: str
    password: str
    updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }
