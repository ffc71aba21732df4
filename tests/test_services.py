# tests/test_services.py

import pytest
import sys
import os
from unittest.mock import MagicMock

import requests

# Add the parent directory to the Python path so we can import from it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from schemas import MediaFile, OutputOptions, StoryAnalysisRequest, StoryTheme, UploadedFile
from services import StatusMapper, WorkflowClient, WorkflowClientError


def make_execution(nodes=(), finished=False, stopped_at=None, **data):
    run_data = {name: [{"data": {}}] for name in nodes}
    execution = {"id": "42", "finished": finished, "stoppedAt": stopped_at, "data": dict(data)}
    execution["data"]["resultData"] = {"runData": run_data}
    return execution


def make_response(payload=None, error=None):
    response = MagicMock()
    response.json.return_value = payload
    if error is not None:
        response.raise_for_status.side_effect = error
    return response


@pytest.fixture
def mapper():
    return StatusMapper(expected_nodes=10, step_labels={
        "Transcribe with Whisper": "Transcribing audio...",
        "4P Story Analysis": "Analyzing story structure...",
    })


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session, mapper):
    return WorkflowClient(base_url="http://n8n.test/", api_key="secret", mapper=mapper, session=session)


# --- StatusMapper ---

@pytest.mark.parametrize("finished", [True, False, None])
def test_stop_timestamp_always_means_failed(finished):
    assert StatusMapper.map_status(finished, "2024-05-01T10:00:00Z") == "failed"


def test_finished_without_stop_is_completed():
    assert StatusMapper.map_status(True, None) == "completed"


def test_unfinished_is_processing():
    assert StatusMapper.map_status(False, None) == "processing"


def test_progress_grows_with_nodes_and_is_clamped(mapper):
    values = [mapper.progress(make_execution(nodes=[f"node {i}" for i in range(count)])) for count in range(15)]

    assert values[0] == 0
    assert values[3] == 30.0
    assert values == sorted(values)
    assert max(values) == 100.0


def test_progress_without_run_data_is_zero(mapper):
    assert mapper.progress({}) == 0
    assert mapper.progress({"data": None}) == 0


def test_current_step_uses_last_completed_node(mapper):
    execution = make_execution(nodes=["Upload Interviews Webhook", "Transcribe with Whisper"])
    assert mapper.current_step(execution) == "Transcribing audio..."


def test_current_step_defaults(mapper):
    assert mapper.current_step({}) == "Starting..."
    assert mapper.current_step(make_execution(nodes=["Some New Node"])) == "Processing..."


def test_empty_run_data_is_processing_not_starting(mapper):
    execution = {"data": {"resultData": {"runData": {}}}}

    assert mapper.current_step(execution) == "Processing..."
    assert mapper.progress(execution) == 0


def test_expected_nodes_must_be_positive():
    with pytest.raises(ValueError):
        StatusMapper(expected_nodes=0)


def test_failed_execution_surfaces_engine_error(mapper):
    execution = make_execution(nodes=["4P Story Analysis"], finished=True, stopped_at="2024-05-01T10:00:00Z")
    execution["data"]["resultData"]["error"] = {"message": "disk full"}

    status = mapper.to_status(execution, job_id="42")

    assert status.status == "failed"
    assert status.error == "disk full"
    assert status.results is None


def test_completed_execution_reads_top_level_results(mapper):
    execution = make_execution(
        nodes=["4P Story Analysis"],
        finished=True,
        analysis={"people": [{"name": "Ana"}]},
        deliverables={"spreadsheetUrl": "https://sheets.test/1"},
    )

    status = mapper.to_status(execution)

    assert status.status == "completed"
    assert status.job_id == "42"
    assert status.results.analysis == {"people": [{"name": "Ana"}]}
    assert status.results.deliverables == {"spreadsheetUrl": "https://sheets.test/1"}


def test_completed_execution_reads_last_node_output(mapper):
    execution = make_execution(finished=True)
    execution["data"]["resultData"] = {
        "lastNodeExecuted": "Create Final Story Video",
        "runData": {
            "Create Final Story Video": [
                {"data": {"main": [[{"json": {"analysis": {"plot": []}, "deliverables": {"finalSequenceUrl": "x"}}}]]}}
            ],
        },
    }

    status = mapper.to_status(execution)

    assert status.results.analysis == {"plot": []}
    assert status.results.deliverables == {"finalSequenceUrl": "x"}


def test_results_only_for_completed(mapper):
    execution = make_execution(finished=False, analysis={"people": []})
    assert mapper.to_status(execution).results is None


# --- WorkflowClient ---

def test_start_workflow_posts_request_and_returns_execution_id(client, session):
    session.post.return_value = make_response({"executionId": 981})
    request = StoryAnalysisRequest(
        files=[MediaFile(filename="interview_1.mp4", filepath="a.mp4", mime_type="video/mp4")],
        themes=[StoryTheme(name="Family")],
        output_options=OutputOptions(),
    )

    assert client.start_storytelling_workflow(request) == "981"

    url = session.post.call_args.args[0]
    kwargs = session.post.call_args.kwargs
    assert url == "http://n8n.test/webhook/storytelling-analysis"
    assert kwargs["headers"] == {"X-N8N-API-KEY": "secret"}
    assert kwargs["json"]["files"][0] == {
        "filename": "interview_1.mp4", "filepath": "a.mp4", "size": 0, "mimeType": "video/mp4",
    }
    assert kwargs["json"]["themes"] == [{"name": "Family", "description": "", "priority": "medium"}]
    assert kwargs["json"]["outputOptions"] == {
        "createSpreadsheet": True, "createSummary": True, "createVideoClips": True, "language": "en",
    }


def test_start_workflow_wraps_http_errors(client, session):
    session.post.return_value = make_response(error=requests.HTTPError("500 Server Error"))
    request = StoryAnalysisRequest(files=[], themes=[])

    with pytest.raises(WorkflowClientError, match="Failed to start storytelling workflow"):
        client.start_storytelling_workflow(request)


def test_get_execution_status_maps_record(client, session):
    session.get.return_value = make_response(make_execution(nodes=["Transcribe with Whisper"]))

    status = client.get_execution_status("42")

    assert session.get.call_args.args[0] == "http://n8n.test/api/v1/executions/42"
    assert status.status == "processing"
    assert status.progress == 10.0
    assert status.current_step == "Transcribing audio..."


def test_get_execution_status_wraps_network_errors(client, session):
    session.get.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(WorkflowClientError, match="Failed to get execution status: connection refused"):
        client.get_execution_status("42")


def test_list_active_executions_forces_processing(client, session):
    finished_looking = make_execution(nodes=["4P Story Analysis"], finished=True)
    finished_looking["id"] = 7
    session.get.return_value = make_response({"data": [finished_looking]})

    jobs = client.list_active_executions()

    assert session.get.call_args.kwargs["params"]["filter"] == '{"finished": false}'
    assert [(job.job_id, job.status, job.current_step) for job in jobs] == [
        ("7", "processing", "Analyzing story structure..."),
    ]


def test_upload_files_collects_paths(client, session):
    session.post.side_effect = [make_response({"filepath": "/data/a.mp3"}), make_response({"filepath": "/data/b.mp3"})]
    files = [
        UploadedFile(filename="a.mp3", content=b"aaa", mime_type="audio/mp3"),
        UploadedFile(filename="b.mp3", content=b"bbbb", mime_type="audio/mp3"),
    ]

    assert client.upload_files(files) == ["/data/a.mp3", "/data/b.mp3"]
    assert session.post.call_args.kwargs["files"] == {"file": ("b.mp3", b"bbbb", "audio/mp3")}


def test_upload_failure_names_the_failed_file(client, session):
    session.post.side_effect = [
        make_response({"filepath": "/data/a.mp3"}),
        make_response({"filepath": "/data/b.mp3"}),
        make_response(error=requests.HTTPError("507 Insufficient Storage")),
    ]
    files = [UploadedFile(filename=name, content=b"x", mime_type="audio/wav") for name in ("a.wav", "b.wav", "c.wav")]

    with pytest.raises(WorkflowClientError) as excinfo:
        client.upload_files(files)

    assert str(excinfo.value).startswith("Failed to upload file c.wav:")
