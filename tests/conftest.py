import base64
import itertools
import json
import pytest
import httpx
from collections import defaultdict
from fastapi.testclient import TestClient
from main import app
from uploader.client.models import UploadTask
from uploader.client.transport import ReceiverClient
from uploader.core.config import settings

BASE_URL = "http://receiver.test/api"


class FakeReceiver:
    """
    Scripted stand-in for the receiver, served through httpx.MockTransport.

    Failures are keyed by the transport file name (and chunk index) so a test
    can make a given file fail at a given step.
    """

    def __init__(self, chunk_size=None, config_status=200):
        self.chunk_size = chunk_size
        self.config_status = config_status
        self.calls = []
        self.init_errors = {}
        self.chunk_errors = {}
        self.complete_errors = {}
        self.init_chunk_size = None
        self.upload_status = 200
        self.upload_body = None
        self.upload_requests = []
        self.chunks = defaultdict(list)
        self._sessions = {}
        self._ids = itertools.count(1)

    def error(self, status_code, code, message="rejected"):
        return httpx.Response(status_code, json={"detail": {"code": code, "error": message}})

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/api"):]
        if path == "/upload/config":
            self.calls.append(("config", None))
            if self.chunk_size is None:
                return httpx.Response(404)
            if self.config_status != 200:
                return httpx.Response(self.config_status)
            return httpx.Response(200, json={"chunkSize": self.chunk_size})

        if path == "/upload":
            body = request.read()
            self.calls.append(("upload", None))
            self.upload_requests.append(body)
            return httpx.Response(self.upload_status, json=self.upload_body or {})

        payload = json.loads(request.content)
        if path == "/chunk/init":
            name = payload["fileName"]
            self.calls.append(("init", name))
            if name in self.init_errors:
                return self.error(*self.init_errors[name])
            upload_id = f"upload-{next(self._ids)}"
            self._sessions[upload_id] = name
            body = {"uploadId": upload_id}
            if self.init_chunk_size:
                body["chunkSize"] = self.init_chunk_size
            return httpx.Response(200, json=body)

        if path == "/chunk":
            name = self._sessions[payload["uploadId"]]
            index = payload["chunkIndex"]
            self.calls.append(("chunk", (name, index)))
            if (name, index) in self.chunk_errors:
                return self.error(*self.chunk_errors[(name, index)])
            self.chunks[name].append((index, base64.b64decode(payload["chunk"])))
            return httpx.Response(
                200,
                json={"success": True, "chunkIndex": index, "uploadedChunks": len(self.chunks[name]), "totalChunks": 0},
            )

        if path == "/chunk/cancel":
            name = self._sessions.pop(payload["uploadId"], None)
            self.calls.append(("cancel", name))
            if name is None:
                return self.error(404, "RESOURCE_NOT_FOUND")
            return httpx.Response(200, json={"success": True, "message": "Upload cancelled"})

        if path == "/chunk/complete":
            name = self._sessions.pop(payload["uploadId"])
            self.calls.append(("complete", name))
            if name in self.complete_errors:
                return self.error(*self.complete_errors[name])
            return httpx.Response(
                200,
                json={"success": True, "file": {"originalName": name, "savedName": name, "size": 0}},
            )

        return httpx.Response(404)

    def client(self) -> ReceiverClient:
        return ReceiverClient(BASE_URL, transport=httpx.MockTransport(self.handler))

    def calls_of(self, kind):
        return [arg for call, arg in self.calls if call == kind]


@pytest.fixture
def fake_receiver():
    return FakeReceiver()


@pytest.fixture
def make_receiver():
    return FakeReceiver


@pytest.fixture
def make_task(tmp_path):
    """Create a file of `size` bytes on disk and return an UploadTask for it."""
    def _make(name: str, size: int = 0, content: bytes = None) -> UploadTask:
        data = content if content is not None else (bytes(range(251)) * (size // 251 + 1))[:size]
        path = tmp_path / "src" / f"{len(list(tmp_path.glob('src/*')))}_{name}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return UploadTask.from_path(path, name=name)
    return _make


@pytest.fixture(autouse=True)
def storage_dirs(tmp_path, monkeypatch):
    """Point the receiver at per-test storage directories."""
    upload_dir = tmp_path / "uploads"
    temp_dir = upload_dir / "temp"
    upload_dir.mkdir(parents=True, exist_ok=True)
    temp_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setattr(settings, "UPLOAD_DIR", upload_dir)
    monkeypatch.setattr(settings, "TEMP_DIR", temp_dir)
    return upload_dir


@pytest.fixture
def test_client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)
