"""Pytest configuration and fixtures."""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from mediaflow.core.exceptions import StitchError
from mediaflow.core.graph_store import GraphStore
from mediaflow.core.tool_registry import ToolRegistry
from mediaflow.media.assembler import ClipAssembler
from mediaflow.media.assets import AssetStore
from mediaflow.media.providers import AssetRef, JobState, JobStatus, ProviderClient, ProviderSet
from mediaflow.media.registry import ModelRegistry
from mediaflow.storage.database import create_tables, init_database, reset_database_engine
from mediaflow.tools.media_tools import MediaServices, register_media_tools


class FakeClock:
    """Monotonic clock that only advances when ``sleep`` is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProvider(ProviderClient):
    """Scripted provider; each ``generate`` call consumes the next scripted outcome.

    An outcome is an ``AssetRef``/``JobHandle`` to return or an exception to
    raise. When the script runs out, inline PNG bytes are returned.
    """

    name = "fake"

    def __init__(self, clock: Optional[FakeClock] = None, outcomes: Optional[list] = None,
                 statuses: Optional[List[JobStatus]] = None):
        self.clock = clock
        self.outcomes = list(outcomes or [])
        self.statuses = list(statuses or [])
        self.calls: List[Dict[str, Any]] = []
        self.polls: List[str] = []

    def generate(self, model_id, input):
        self.calls.append({
            "model": model_id,
            "input": input,
            "at": self.clock.now if self.clock else None,
        })
        outcome = self.outcomes.pop(0) if self.outcomes else AssetRef(content=b"\x89PNG fake")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def poll_status(self, job_id):
        self.polls.append(job_id)
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]


class FakeFFmpegRunner:
    """Records invocations and writes (or refuses to write) the output file."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.invocations: List[List[str]] = []
        self.manifests: List[str] = []

    def run(self, args, listener=None):
        self.invocations.append(list(args))
        manifest = args[args.index("-i") + 1]
        self.manifests.append(Path(manifest).read_text(encoding="utf-8"))
        output = args[-1]
        Path(output).write_bytes(b"partial")
        if self.fail:
            raise StitchError("ffmpeg exited with code 1", return_code=1, output_tail="Invalid data found")
        if listener:
            listener("end", {"return_code": 0})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def asset_store(tmp_path):
    store = AssetStore(str(tmp_path / "public"))
    yield store
    store.close()


@pytest.fixture
def registry():
    return ModelRegistry.default()


@pytest.fixture
def ffmpeg_runner():
    return FakeFFmpegRunner()


@pytest.fixture
def image_provider(clock):
    return FakeProvider(clock)


@pytest.fixture
def video_provider(clock):
    return FakeProvider(clock, statuses=[JobStatus(state=JobState.SUCCEEDED, output=AssetRef(content=b"mp4 fake"))])


@pytest.fixture
def media_services(registry, image_provider, video_provider, asset_store, ffmpeg_runner, clock):
    return MediaServices(
        registry=registry,
        providers=ProviderSet(image=image_provider, video=video_provider),
        assets=asset_store,
        assembler=ClipAssembler(ffmpeg_runner, asset_store),
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def tool_registry():
    registry = ToolRegistry()
    register_media_tools(registry)
    return registry


@pytest.fixture
def temp_db():
    """Create a temporary SQLite database and return its session factory."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    session_factory = init_database(f"sqlite:///{db_path}")
    create_tables()

    yield session_factory

    reset_database_engine()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def graph_store(temp_db):
    return GraphStore(temp_db)


def make_workflow_dict(nodes: list, edges: list, workflow_id: str = "wf-1", name: str = "Test workflow") -> dict:
    """Build an editor-shaped workflow payload."""
    return {
        "id": workflow_id,
        "name": name,
        "description": "",
        "nodes": nodes,
        "edges": [
            {"id": f"e{index}", **edge} for index, edge in enumerate(edges, start=1)
        ],
    }
