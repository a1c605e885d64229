from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class AccessRequestCreate(BaseModel):
    patientQRCode: Optional[str] = None
    patientId: Optional[int] = None

    @model_validator(mode="after")
    def check_target(self):
        if not self.patientQRCode and self.patientId is None:
            raise ValueError("patientQRCode or patientId is required")
        return self


class SuppliedKey(BaseModel):
    recordId: int
    key: str
    iv: Optional[List[int]] = None
    originalFileName: Optional[str] = None
    originalFileType: Optional[str] = None


class GrantBody(BaseModel):
    # Keys held by the patient's client for records without a recovery copy
    encryptionKeys: List[SuppliedKey] = Field(default_factory=list)


class SummaryUpdate(BaseModel):
    aiSummary: Optional[str] = None
