"""
Service classes for the n8n Storytelling MCP server.
Contains StatusMapper and WorkflowClient.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config import (
    N8N_BASE_URL,
    N8N_API_KEY,
    N8N_TIMEOUT_SECONDS,
    N8N_MAX_RETRIES,
    N8N_RETRY_BACKOFF,
    UPLOAD_ENDPOINT,
    STORYTELLING_ENDPOINT,
    EXECUTIONS_ENDPOINT,
    WORKFLOW_EXPECTED_NODES,
    WORKFLOW_STEP_LABELS,
    STARTING_LABEL,
    FALLBACK_LABEL,
)
from schemas import AnalysisResults, ProcessingStatus, StoryAnalysisRequest, UploadedFile


class WorkflowClientError(Exception):
    """Raised when a call to the n8n engine fails."""


def _run_data(execution: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    data = execution.get("data") or {}
    result_data = data.get("resultData") or {}
    run_data = result_data.get("runData")
    return run_data if isinstance(run_data, dict) else None


class StatusMapper:
    """Translates a raw n8n execution record into a ProcessingStatus.

    The expected node count and node-name -> label table describe one specific
    workflow graph, so both are injected rather than hard-coded.
    """

    def __init__(
        self,
        expected_nodes: int = WORKFLOW_EXPECTED_NODES,
        step_labels: Optional[Mapping[str, str]] = None,
    ):
        if expected_nodes < 1:
            raise ValueError("expected_nodes must be at least 1")
        self.expected_nodes = expected_nodes
        self.step_labels = dict(WORKFLOW_STEP_LABELS if step_labels is None else step_labels)

    @staticmethod
    def map_status(finished: Any, stopped_at: Any) -> str:
        if stopped_at:
            return "failed"
        if finished:
            return "completed"
        return "processing"

    def progress(self, execution: Mapping[str, Any]) -> float:
        run_data = _run_data(execution)
        if not run_data:
            return 0.0
        return min(len(run_data) * 100 / self.expected_nodes, 100.0)

    def current_step(self, execution: Mapping[str, Any]) -> str:
        run_data = _run_data(execution)
        if run_data is None:
            return STARTING_LABEL
        if not run_data:
            return FALLBACK_LABEL
        last_node = list(run_data)[-1]
        return self.step_labels.get(last_node, FALLBACK_LABEL)

    @staticmethod
    def error_message(execution: Mapping[str, Any]) -> Optional[str]:
        if not execution.get("stoppedAt"):
            return None
        data = execution.get("data") or {}
        error = (data.get("resultData") or {}).get("error")
        if isinstance(error, dict):
            return error.get("message")
        return None

    @staticmethod
    def extract_results(execution: Mapping[str, Any]) -> Optional[AnalysisResults]:
        """Find the analysis payload, either at the top of the execution data
        or in the JSON output of the last executed node."""
        data = execution.get("data") or {}
        if isinstance(data.get("analysis"), dict):
            return AnalysisResults(
                analysis=data["analysis"],
                deliverables=data.get("deliverables") or {},
            )

        result_data = data.get("resultData") or {}
        last_node = result_data.get("lastNodeExecuted")
        runs = (_run_data(execution) or {}).get(last_node) or []
        try:
            output = runs[-1]["data"]["main"][0][0]["json"]
        except (IndexError, KeyError, TypeError):
            return None
        if isinstance(output, dict) and isinstance(output.get("analysis"), dict):
            return AnalysisResults(
                analysis=output["analysis"],
                deliverables=output.get("deliverables") or {},
            )
        return None

    def to_status(self, execution: Mapping[str, Any], job_id: Optional[str] = None) -> ProcessingStatus:
        status = self.map_status(execution.get("finished"), execution.get("stoppedAt"))
        return ProcessingStatus(
            job_id=str(job_id if job_id is not None else execution.get("id", "")),
            status=status,
            progress=self.progress(execution),
            current_step=self.current_step(execution),
            results=self.extract_results(execution) if status == "completed" else None,
            error=self.error_message(execution),
        )


class WorkflowClient:
    """Handles HTTP communication with the n8n workflow engine."""

    def __init__(
        self,
        base_url: str = N8N_BASE_URL,
        api_key: str = N8N_API_KEY,
        mapper: Optional[StatusMapper] = None,
        session: Optional[requests.Session] = None,
        timeout: float = N8N_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.mapper = mapper or StatusMapper()
        self.timeout = timeout
        self.headers = {"X-N8N-API-KEY": api_key}
        self.session = session or self._build_session()

    def _build_session(self) -> requests.Session:
        # Only GETs are retried; a retried POST could start the workflow twice.
        retry = Retry(
            total=N8N_MAX_RETRIES,
            backoff_factor=N8N_RETRY_BACKOFF,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET"}),
            raise_on_status=False,
        )
        session = requests.Session()
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def upload_files(self, files: List[UploadedFile]) -> List[str]:
        """Upload each file in order. The first failure aborts the batch."""
        uploaded_paths = []
        for file in files:
            try:
                response = self.session.post(
                    self._url(UPLOAD_ENDPOINT),
                    files={"file": (file.filename, file.content, file.mime_type)},
                    headers=self.headers,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                uploaded_paths.append(response.json()["filepath"])
            except (requests.RequestException, ValueError, KeyError, TypeError) as e:
                logging.error(f"❌ Upload of {file.filename} failed: {e}")
                raise WorkflowClientError(f"Failed to upload file {file.filename}: {e}") from e
            logging.info(f"📤 Uploaded {file.filename} ({file.size} bytes)")
        return uploaded_paths

    def start_storytelling_workflow(self, request: StoryAnalysisRequest) -> str:
        payload = request.model_dump(by_alias=True, exclude_none=True)
        try:
            response = self.session.post(
                self._url(STORYTELLING_ENDPOINT),
                json=payload,
                headers=self.headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            execution_id = response.json()["executionId"]
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logging.error(f"❌ Could not start storytelling workflow: {e}")
            raise WorkflowClientError(f"Failed to start storytelling workflow: {e}") from e

        logging.info(f"✨ Storytelling workflow started as execution {execution_id} ({len(request.files)} files)")
        return str(execution_id)

    def get_execution_status(self, execution_id: str) -> ProcessingStatus:
        try:
            response = self.session.get(
                self._url(f"{EXECUTIONS_ENDPOINT}/{execution_id}"),
                params={"includeData": "true"},
                headers=self.headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            execution = response.json()
            if not isinstance(execution, dict):
                raise ValueError("execution record is not a JSON object")
        except (requests.RequestException, ValueError) as e:
            logging.error(f"❌ Could not fetch execution {execution_id}: {e}")
            raise WorkflowClientError(f"Failed to get execution status: {e}") from e

        return self.mapper.to_status(execution, job_id=execution_id)

    def list_active_executions(self) -> List[ProcessingStatus]:
        try:
            response = self.session.get(
                self._url(EXECUTIONS_ENDPOINT),
                params={"filter": '{"finished": false}', "includeData": "true"},
                headers=self.headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            executions = response.json()["data"]
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logging.error(f"❌ Could not list executions: {e}")
            raise WorkflowClientError(f"Failed to list executions: {e}") from e

        return [
            ProcessingStatus(
                job_id=str(execution.get("id", "")),
                status="processing",
                progress=self.mapper.progress(execution),
                current_step=self.mapper.current_step(execution),
            )
            for execution in executions
        ]
