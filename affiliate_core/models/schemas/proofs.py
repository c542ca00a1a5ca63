"""
Pydantic schemas for proof submission and the extraction cache.
"""
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field
from ..db.enums import ProofType


class ProofSubmit(BaseModel):
    image: str = Field(min_length=1, description="Image reference or data URL")
    expectations: Dict[str, Any] = Field(default_factory=dict)
    extract: bool = True


class ExtractRequest(BaseModel):
    expectations: Dict[str, Any] = Field(default_factory=dict)
    force_reextract: bool = False


class PrewarmEntry(BaseModel):
    order_id: int = Field(gt=0)
    proof_type: ProofType
    expectations: Dict[str, Any] = Field(default_factory=dict)


class PrewarmRequest(BaseModel):
    items: List[PrewarmEntry] = Field(min_length=1)


class ExtractionRead(BaseModel):
    order_id: int
    proof_type: ProofType
    fields: Dict[str, Any]
    confidence: Optional[float]
    extracted_at: str
    cached: bool
