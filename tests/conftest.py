# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Shared fixtures: an artifact tree, an isolated Docker configuration, a
recording build engine and a fake urllib transport for registry traffic.
"""
import io
import json
from types import SimpleNamespace
from urllib.error import HTTPError

import pytest

from d2i.ENGINE.base import BuildEngine
from d2i.MODELS.container_spec import BuildResult


class RecordingEngine(BuildEngine):
    """Build engine that records what it was asked to build."""

    def __init__(self):
        self.calls = []

    def containerize(self, spec, destination):
        self.calls.append((spec, destination))
        return BuildResult(image_id="sha256:" + "1" * 64, digest="sha256:" + "2" * 64, elapsed_seconds=0.5)


@pytest.fixture
def target_dir(tmp_path):
    """Build output with an empty jars directory, one lib file and two classes."""
    root = tmp_path / "target"
    (root / "jars").mkdir(parents=True)
    (root / "lib").mkdir()
    (root / "lib" / "config.edn").write_text("{:port 8080}")
    (root / "classes" / "my_app").mkdir(parents=True)
    (root / "classes" / "my_app" / "core.class").write_bytes(b"\xca\xfe\xba\xbe\x00")
    (root / "classes" / "my_app" / "core$_main.class").write_bytes(b"\xca\xfe\xba\xbe\x01")
    return root


@pytest.fixture(autouse=True)
def docker_config(tmp_path, monkeypatch):
    """Points DOCKER_CONFIG at an empty directory; returns a writer for config.json."""
    config_dir = tmp_path / "docker-config"
    config_dir.mkdir()
    monkeypatch.setenv("DOCKER_CONFIG", str(config_dir))

    def write(data):
        (config_dir / "config.json").write_text(json.dumps(data))
        return config_dir / "config.json"

    return write


@pytest.fixture
def engine():
    return RecordingEngine()


class FakeResponse:
    """Successful urlopen result."""

    def __init__(self, status, headers, body):
        self.status = status
        self.headers = headers
        self._body = body

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeHttp:
    """
    Replacement for urlopen in the registry client. Each request is recorded
    with the body it carried, then answered with the next queued
    (status, headers, body) triple, or by the handler when the queue is empty.
    Statuses of 400 and above are raised as HTTPError, as urllib does.
    """

    def __init__(self):
        self.requests = []
        self.responses = []
        self.handler = None

    def queue(self, status, headers=None, body=b""):
        self.responses.append((status, headers or {}, body))
        return self

    def __call__(self, request, timeout=None):
        data = request.data
        body = data.read() if hasattr(data, "read") else data
        recorded = SimpleNamespace(
            method=request.get_method(),
            url=request.full_url,
            authorization=request.get_header("Authorization"),
            headers={**request.headers, **request.unredirected_hdrs},
            body=body,
        )
        self.requests.append(recorded)

        if self.responses:
            status, headers, payload = self.responses.pop(0)
        else:
            status, headers, payload = self.handler(recorded)

        if status >= 400:
            raise HTTPError(request.full_url, status, "error", headers, io.BytesIO(payload))
        return FakeResponse(status, headers, payload)


@pytest.fixture
def http(monkeypatch):
    """Routes every registry client request through a FakeHttp."""
    fake = FakeHttp()
    monkeypatch.setattr("d2i.REGISTRY.registry_client.urlopen", fake)
    return fake
