"""
Pydantic models for data validation in the n8n Storytelling MCP server.

Wire names are camelCase (the n8n workflow and MCP clients speak camelCase);
the Python attributes are snake_case.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional


JobState = Literal["pending", "processing", "completed", "failed"]
Priority = Literal["high", "medium", "low"]
InsightType = Literal["people", "places", "purpose", "plot", "soundbites", "transformation", "all"]


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Analysis request ---

class StoryTheme(CamelModel):
    """A theme the storytelling analysis should explore."""
    name: str
    description: str = ""
    priority: Priority = "medium"


class MediaFile(CamelModel):
    """An interview file handed to the workflow. Size/duration are filled in by n8n."""
    filename: str
    filepath: str
    size: int = 0
    mime_type: str
    duration: Optional[float] = None


class OutputOptions(CamelModel):
    """Deliverables the workflow should produce."""
    create_spreadsheet: bool = True
    create_summary: bool = True
    create_video_clips: bool = True
    language: str = "en"


class StoryAnalysisRequest(CamelModel):
    """Payload POSTed to the storytelling-analysis webhook."""
    files: List[MediaFile]
    themes: List[StoryTheme]
    output_options: OutputOptions = Field(default_factory=OutputOptions)


# --- Analysis output (produced by n8n, only read here) ---

class AnalysisResults(BaseModel):
    """Raw analysis and deliverables exactly as the workflow returned them."""
    analysis: Dict[str, Any] = Field(default_factory=dict)
    deliverables: Dict[str, Any] = Field(default_factory=dict)


class ProcessingStatus(CamelModel):
    """Normalized view of one n8n execution."""
    job_id: str
    status: JobState
    progress: float = 0
    current_step: str
    results: Optional[AnalysisResults] = None
    error: Optional[str] = None


# --- Tool arguments ---

class StartAnalysisArgs(CamelModel):
    themes: List[StoryTheme]
    file_urls: List[str] = Field(min_length=1)
    output_options: OutputOptions = Field(default_factory=OutputOptions)


class JobArgs(CamelModel):
    job_id: str = Field(min_length=1)


class UploadFileItem(CamelModel):
    filename: str = Field(min_length=1)
    content: str
    mime_type: str


class UploadFilesArgs(CamelModel):
    files: List[UploadFileItem] = Field(min_length=1)


class InsightArgs(CamelModel):
    job_id: str = Field(min_length=1)
    insight_type: InsightType = "all"


class UploadedFile(CamelModel):
    """Decoded upload ready to be sent to the workflow."""
    filename: str
    content: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.content)
