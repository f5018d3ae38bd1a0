import pytest
from google.api_core import exceptions as api_exceptions

import archive_pipeline.main as main


class FakeProcessor:
    def __init__(self):
        self.processed = []

    async def process_archive(self, metadata):
        self.processed.append(metadata)

    async def list_available_transcripts(self):
        return ["a1", "a2"]

    async def get_transcript(self, archive_id):
        if archive_id != "a1":
            raise api_exceptions.NotFound(archive_id)
        return {"archiveId": "a1", "transcripts": []}


@pytest.fixture
def client(monkeypatch):
    fake = FakeProcessor()
    monkeypatch.setattr(main, "processor", fake)
    return main.app.test_client(), fake


def test_archive_callback_starts_processing(client, monkeypatch):
    http, _ = client
    started = []
    monkeypatch.setattr(main, "_run_in_background", started.append)
    rv = http.post("/archive", json={"id": "a1", "outputMode": "composed", "projectId": "p1"})
    assert rv.status_code == 202
    assert [m.id for m in started] == ["a1"]


def test_archive_callback_runs_processor_in_thread(client):
    http, fake = client
    metadata = main.ArchiveMetadata.from_dict({"id": "a1", "outputMode": "composed"})
    worker = main._run_in_background(metadata)
    worker.join(timeout=5)
    assert fake.processed == [metadata]


def test_archive_callback_rejects_malformed_body(client):
    http, fake = client
    rv = http.post("/archive", json={"outputMode": "composed"})
    assert rv.status_code == 400
    assert fake.processed == []


def test_list_transcripts(client):
    http, _ = client
    rv = http.get("/transcripts")
    assert rv.status_code == 200
    assert rv.get_json() == ["a1", "a2"]


def test_get_transcript(client):
    http, _ = client
    assert http.get("/transcripts/a1").get_json() == {"archiveId": "a1", "transcripts": []}
    assert http.get("/transcripts/missing").status_code == 404


def test_processor_is_built_from_environment(monkeypatch, tmp_path):
    monkeypatch.setattr(main, "processor", None)
    monkeypatch.setenv("BLOB_BUCKET", "archives")
    monkeypatch.setenv("PROJECT_ID", "p1")
    monkeypatch.setenv("STAGING_BUCKET", "staging")
    monkeypatch.setenv("TMP_DIR", str(tmp_path / "tmp"))
    built = main.get_processor()
    assert built.config.project_id == "p1"
    assert (tmp_path / "tmp").is_dir()
    assert main.get_processor() is built


@pytest.mark.parametrize("body", [[1], "archive", 7])
def test_archive_callback_rejects_non_object_body(client, body):
    http, fake = client
    rv = http.post("/archive", json=body)
    assert rv.status_code == 400
    assert fake.processed == []
