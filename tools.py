"""
Tool registry for the n8n Storytelling MCP server.

Declares the five storytelling tools, validates their arguments, forwards them
to the WorkflowClient and shapes the results into {"success": ...} envelopes.
"""

import base64
import binascii
import logging
import os
import threading
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from config import DEFAULT_MIME_TYPE, EMOTIONAL_HIGHPOINT_THRESHOLD, ESTIMATED_DURATION, INITIAL_LABEL, MIME_TYPES
from schemas import (
    InsightArgs,
    JobArgs,
    MediaFile,
    ProcessingStatus,
    StartAnalysisArgs,
    StoryAnalysisRequest,
    UploadedFile,
    UploadFilesArgs,
)
from services import WorkflowClient


class UnknownToolError(Exception):
    """Raised when a tool name has no registered handler."""


class InvalidArgumentsError(Exception):
    """Raised when tool arguments do not match the declared shape."""


TOOL_DECLARATIONS: List[Dict[str, Any]] = [
    {
        "name": "start_storytelling_analysis",
        "description": (
            "Start analysis of interview files using the Still Motion Muse 4P framework "
            "(People, Places, Purpose, Plot). Processes audio/video files to create story "
            "analysis with soundbites, summaries, and video clips."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "themes": {
                    "type": "array",
                    "description": "Key themes to explore in the storytelling analysis",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string", "description": "Theme name"},
                            "description": {"type": "string", "description": "Theme description"},
                            "priority": {
                                "type": "string",
                                "enum": ["high", "medium", "low"],
                                "description": "Theme priority level",
                            },
                        },
                        "required": ["name"],
                    },
                },
                "outputOptions": {
                    "type": "object",
                    "description": "Configuration for output deliverables",
                    "properties": {
                        "createSpreadsheet": {
                            "type": "boolean",
                            "description": "Create Google Spreadsheet with timestamped soundbites",
                            "default": True,
                        },
                        "createSummary": {
                            "type": "boolean",
                            "description": "Create written story summaries",
                            "default": True,
                        },
                        "createVideoClips": {
                            "type": "boolean",
                            "description": "Extract video/audio clips and create final sequence",
                            "default": True,
                        },
                        "language": {
                            "type": "string",
                            "description": "Target language for translation (default: English)",
                            "default": "en",
                        },
                    },
                },
                "fileUrls": {
                    "type": "array",
                    "description": "URLs or file paths of interview audio/video files to analyze",
                    "items": {"type": "string"},
                },
            },
            "required": ["themes", "fileUrls"],
        },
    },
    {
        "name": "get_analysis_status",
        "description": "Check the status of a storytelling analysis job and retrieve results when completed.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "jobId": {"type": "string", "description": "Job ID returned from start_storytelling_analysis"},
            },
            "required": ["jobId"],
        },
    },
    {
        "name": "list_active_jobs",
        "description": "List all currently active storytelling analysis jobs.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "upload_interview_files",
        "description": (
            "Upload interview files (audio/video) to the processing system. "
            "Returns file information for use in analysis."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "files": {
                    "type": "array",
                    "description": "Array of file objects with content and metadata",
                    "items": {
                        "type": "object",
                        "properties": {
                            "filename": {"type": "string", "description": "Original filename"},
                            "content": {"type": "string", "description": "Base64 encoded file content"},
                            "mimeType": {"type": "string", "description": "MIME type of the file"},
                        },
                        "required": ["filename", "content", "mimeType"],
                    },
                },
            },
            "required": ["files"],
        },
    },
    {
        "name": "get_story_insights",
        "description": (
            "Get detailed insights from completed story analysis, including 4P breakdown, "
            "emotional moments, and transformation arcs."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "jobId": {"type": "string", "description": "Job ID of completed analysis"},
                "insightType": {
                    "type": "string",
                    "enum": ["people", "places", "purpose", "plot", "soundbites", "transformation", "all"],
                    "description": "Type of insights to retrieve",
                    "default": "all",
                },
            },
            "required": ["jobId"],
        },
    },
]


def mime_type_from_url(url: str) -> str:
    return MIME_TYPES.get(_extension(url), DEFAULT_MIME_TYPE)


def _extension(url: str) -> str:
    path = urlparse(url).path or url
    return os.path.splitext(path)[1].lstrip(".").lower()


def _format_validation_error(tool_name: str, error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "arguments"
        problems.append(f"{location}: {item['msg']}")
    return f"Invalid arguments for {tool_name}: " + "; ".join(problems)


def validate_arguments(model, arguments: Dict[str, Any], tool_name: str):
    try:
        return model.model_validate(arguments)
    except ValidationError as e:
        raise InvalidArgumentsError(_format_validation_error(tool_name, e)) from e


def _entries(analysis: Dict[str, Any], key: str) -> List[Any]:
    entries = analysis.get(key)
    return entries if isinstance(entries, list) else []


def _impact(soundbite: Any) -> Optional[float]:
    if not isinstance(soundbite, dict):
        return None
    try:
        return float(soundbite.get("emotionalImpact"))
    except (TypeError, ValueError):
        return None


def generate_result_summary(analysis: Dict[str, Any]) -> str:
    return (
        f"Analysis completed with {len(_entries(analysis, 'soundbites'))} soundbites identified across "
        f"{len(_entries(analysis, 'people'))} key characters. The story explores themes of transformation "
        f"through {len(_entries(analysis, 'purpose'))} core purposes across "
        f"{len(_entries(analysis, 'places'))} significant locations."
    )


def extract_transformation_insights(analysis: Dict[str, Any]) -> Dict[str, Any]:
    """Derived view: transformation plot points, character arcs and emotional peaks.

    Entries are returned as the workflow produced them. Malformed entries are
    skipped, never rejected.
    """
    people = [person for person in _entries(analysis, "people") if isinstance(person, dict)]
    return {
        "transformationMoments": [
            event for event in _entries(analysis, "plot")
            if isinstance(event, dict) and "transformation" in str(event.get("significance") or "")
        ],
        "keyCharacterArcs": [
            {"character": person.get("name"), "transformation": person.get("significance")}
            for person in people
        ],
        "emotionalHighpoints": [
            soundbite for soundbite in _entries(analysis, "soundbites")
            if (_impact(soundbite) or 0) > EMOTIONAL_HIGHPOINT_THRESHOLD
        ],
    }


class JobCache:
    """Last-seen status per job, for display only.

    n8n owns the real state; entries are overwritten on every poll and never
    reconciled otherwise.
    """

    def __init__(self):
        self._jobs: Dict[str, ProcessingStatus] = {}
        self._lock = threading.Lock()

    def record(self, status: ProcessingStatus) -> None:
        with self._lock:
            previous = self._jobs.get(status.job_id)
            self._jobs[status.job_id] = status
        if previous is not None and previous.status != status.status:
            logging.info(f"🔄 Job {status.job_id} status {previous.status} → {status.status}")

    def get(self, job_id: str) -> Optional[ProcessingStatus]:
        with self._lock:
            return self._jobs.get(job_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class StorytellingTools:
    """Executes storytelling tools against the n8n workflow engine."""

    def __init__(self, client: WorkflowClient, jobs: Optional[JobCache] = None):
        self.client = client
        self.jobs = jobs if jobs is not None else JobCache()
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "start_storytelling_analysis": self.execute_start_analysis,
            "get_analysis_status": self.execute_get_status,
            "list_active_jobs": self.execute_list_jobs,
            "upload_interview_files": self.execute_upload_files,
            "get_story_insights": self.execute_get_insights,
        }

    def declarations(self) -> List[Dict[str, Any]]:
        return TOOL_DECLARATIONS

    def dispatch(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(f"Unknown tool: {name}")
        return handler(arguments or {})

    def _run(self, failure_prefix: str, action: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return action()
        except InvalidArgumentsError as e:
            logging.warning(f"⚠️ {e}")
            return {"success": False, "error": str(e)}
        except Exception as e:
            logging.error(f"❌ {failure_prefix}: {e}")
            return {"success": False, "error": f"{failure_prefix}: {e}"}

    # --- start_storytelling_analysis ---

    def execute_start_analysis(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self._run("Failed to start analysis",
                         lambda: self._start_analysis(arguments))

    def _start_analysis(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = validate_arguments(StartAnalysisArgs, arguments, "start_storytelling_analysis")
        request = build_analysis_request(args)

        execution_id = self.client.start_storytelling_workflow(request)
        self.jobs.record(ProcessingStatus(
            job_id=execution_id,
            status="pending",
            progress=0,
            current_step=INITIAL_LABEL,
        ))

        return {
            "success": True,
            "jobId": execution_id,
            "message": "Storytelling analysis started successfully",
            "estimatedDuration": ESTIMATED_DURATION,
            "themes": [theme.name for theme in args.themes],
            "fileCount": len(request.files),
        }

    # --- get_analysis_status ---

    def execute_get_status(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self._run("Failed to get status",
                         lambda: self._get_status(arguments))

    def _get_status(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = validate_arguments(JobArgs, arguments, "get_analysis_status")
        status = self.client.get_execution_status(args.job_id)
        self.jobs.record(status)

        response = {
            "success": True,
            "status": status.status,
            "progress": status.progress,
            "currentStep": status.current_step,
        }
        if status.status == "completed" and status.results is not None:
            response["results"] = {
                "analysis": status.results.analysis,
                "deliverables": status.results.deliverables,
                "summary": generate_result_summary(status.results.analysis),
            }
        elif status.error is not None:
            response["error"] = status.error
        return response

    # --- list_active_jobs ---

    def execute_list_jobs(self, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._run("Failed to list jobs", self._list_jobs)

    def _list_jobs(self) -> Dict[str, Any]:
        active_jobs = self.client.list_active_executions()
        return {
            "success": True,
            "activeJobs": [
                {
                    "jobId": job.job_id,
                    "status": job.status,
                    "progress": job.progress,
                    "currentStep": job.current_step,
                }
                for job in active_jobs
            ],
            "totalActive": len(active_jobs),
        }

    # --- upload_interview_files ---

    def execute_upload_files(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self._run("Failed to upload files",
                         lambda: self._upload_files(arguments))

    def _upload_files(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = validate_arguments(UploadFilesArgs, arguments, "upload_interview_files")
        uploads = [decode_upload(item.filename, item.content, item.mime_type) for item in args.files]

        uploaded_paths = self.client.upload_files(uploads)

        return {
            "success": True,
            "message": "Files uploaded successfully",
            "files": [
                {
                    "filename": upload.filename,
                    "filepath": path,
                    "size": upload.size,
                    "mimeType": upload.mime_type,
                }
                for upload, path in zip(uploads, uploaded_paths)
            ],
        }

    # --- get_story_insights ---

    def execute_get_insights(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self._run("Failed to get insights",
                         lambda: self._get_insights(arguments))

    def _get_insights(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = validate_arguments(InsightArgs, arguments, "get_story_insights")
        status = self.client.get_execution_status(args.job_id)
        self.jobs.record(status)

        if status.status != "completed" or status.results is None:
            return {"success": False, "error": "Analysis not completed yet or no results available"}

        analysis = status.results.analysis
        if args.insight_type == "all":
            return {"success": True, "insights": analysis}
        if args.insight_type == "transformation":
            return {"success": True, "insights": extract_transformation_insights(analysis)}
        return {"success": True, "insights": analysis.get(args.insight_type) or []}


def build_analysis_request(args: StartAnalysisArgs) -> StoryAnalysisRequest:
    """Turn caller-supplied file URLs into MediaFile entries for the workflow."""
    files = []
    for index, url in enumerate(args.file_urls, start=1):
        extension = _extension(url)
        files.append(MediaFile(
            filename=f"interview_{index}.{extension}" if extension else f"interview_{index}",
            filepath=url,
            size=0,
            mime_type=mime_type_from_url(url),
        ))
    return StoryAnalysisRequest(files=files, themes=args.themes, output_options=args.output_options)


def decode_upload(filename: str, content: str, mime_type: str) -> UploadedFile:
    try:
        data = base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidArgumentsError(f"Invalid arguments for upload_interview_files: {filename} is not valid base64 ({e})")
    return UploadedFile(filename=filename, content=data, mime_type=mime_type)


@lru_cache(maxsize=1)
def get_storytelling_tools() -> StorytellingTools:
    """Shared registry used by both transports."""
    return StorytellingTools(WorkflowClient())
