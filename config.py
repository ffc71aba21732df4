"""
Configuration file for the n8n Storytelling MCP server.
Contains all global constants, read once from the environment at startup.
"""

import os
import json

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


# --- Server ---
SERVER_NAME = "n8n-storytelling-mcp"
SERVER_VERSION = "1.0.0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# --- HTTP transport ---
HTTP_HOST = os.getenv("HTTP_HOST", "127.0.0.1")
HTTP_PORT = _int_env("HTTP_PORT", 8000)
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

# --- n8n workflow engine ---
N8N_BASE_URL = os.getenv("N8N_BASE_URL", "http://localhost:5678").rstrip("/")
N8N_API_KEY = os.getenv("N8N_API_KEY", "")
N8N_TIMEOUT_SECONDS = _float_env("N8N_TIMEOUT_SECONDS", 30.0)
N8N_MAX_RETRIES = _int_env("N8N_MAX_RETRIES", 3)
N8N_RETRY_BACKOFF = _float_env("N8N_RETRY_BACKOFF", 0.5)

UPLOAD_ENDPOINT = "/webhook/upload-file"
STORYTELLING_ENDPOINT = "/webhook/storytelling-analysis"
EXECUTIONS_ENDPOINT = "/api/v1/executions"

# --- Workflow graph ---
# Must match the node layout of the storytelling workflow deployed in n8n.
WORKFLOW_EXPECTED_NODES = _int_env("WORKFLOW_EXPECTED_NODES", 10)

DEFAULT_STEP_LABELS = {
    "Upload Interviews Webhook": "Processing uploads...",
    "Process Input Files": "Analyzing files...",
    "Transcribe with Whisper": "Transcribing audio...",
    "4P Story Analysis": "Analyzing story structure...",
    "Update Google Spreadsheet": "Creating spreadsheet...",
    "Create Story Summary Doc": "Writing summary...",
    "Extract Soundbite Clips": "Extracting clips...",
    "Create Final Story Video": "Creating final video...",
}

_step_labels_raw = os.getenv("WORKFLOW_STEP_LABELS")
if _step_labels_raw:
    try:
        WORKFLOW_STEP_LABELS = json.loads(_step_labels_raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"WORKFLOW_STEP_LABELS is not valid JSON: {e}")
    if not isinstance(WORKFLOW_STEP_LABELS, dict):
        raise ValueError("WORKFLOW_STEP_LABELS must be a JSON object of node name -> label")
else:
    WORKFLOW_STEP_LABELS = dict(DEFAULT_STEP_LABELS)

STARTING_LABEL = "Starting..."
FALLBACK_LABEL = "Processing..."
INITIAL_LABEL = "Initializing analysis..."

# --- Analysis request shaping ---
MIME_TYPES = {
    "mp4": "video/mp4",
    "avi": "video/avi",
    "mov": "video/quicktime",
    "mp3": "audio/mp3",
    "wav": "audio/wav",
    "flac": "audio/flac",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

ESTIMATED_DURATION = "10-30 minutes depending on file sizes"
EMOTIONAL_HIGHPOINT_THRESHOLD = 7
