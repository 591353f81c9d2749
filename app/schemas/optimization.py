from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class OptimizeRequest(BaseModel):
    original_prompt: str = Field(..., min_length=1)
    audience: Optional[str] = None
    focus_areas: Optional[List[str]] = None


class PromptResponse(BaseModel):
    id: int
    original_prompt: str
    optimized_prompt: str
    audience: str
    focus_areas: List[str]
    created_at: datetime


class OptimizeResponse(PromptResponse):
    reasoning: str
    improvements: List[str]
    prompts_used: int
