"""
Pytest configuration and fixtures for resflow.

- Zero-delay settings so scheduler tests run without the production stagger.
- A recording fake tool invoker and a manager wired to it.
- Isolated working directory and environment per test.
"""

import os
from pathlib import Path
from typing import Any, Dict, Generator, List

import pytest

from resflow.builder.graph_store import GraphStore
from resflow.builder.workflow_manager import FileStorage, WorkflowManager
from resflow.settings import Settings, get_settings

from helpers import RecordingInvoker


# --- Core Fixtures ---

@pytest.fixture
def temp_work_dir(tmp_path: Path) -> Generator[Path, None, None]:
    yield tmp_path


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, temp_work_dir: Path) -> Generator[None, None, None]:
    """
    Runs every test in its own directory with no RESFLOW_* variables leaking
    in, and a fresh settings cache.
    """
    monkeypatch.chdir(temp_work_dir)
    for key in [k for k in os.environ if k.startswith("RESFLOW_")]:
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fast_settings(temp_work_dir: Path) -> Settings:
    return Settings(
        root_start_delay=0,
        root_stagger=0,
        child_delay=0,
        tool_timeout=5,
        storage_dir=str(temp_work_dir / "storage"),
        export_dir=str(temp_work_dir / "exports"),
    )


@pytest.fixture
def store() -> GraphStore:
    return GraphStore()


@pytest.fixture
def invoker() -> RecordingInvoker:
    return RecordingInvoker()


@pytest.fixture
def manager(fast_settings: Settings, invoker: RecordingInvoker, temp_work_dir: Path) -> WorkflowManager:
    storage = FileStorage(base_dir=str(temp_work_dir / "storage"))
    return WorkflowManager(invoker=invoker, storage=storage, settings=fast_settings)


@pytest.fixture
def three_papers() -> List[Dict[str, Any]]:
    return [
        {"title": "Graph Attention Networks", "authors": ["Velickovic", "Cucurull"], "year": 2018},
        {"title": "Semi-Supervised Classification with GCNs", "authors": ["Kipf", "Welling"], "year": 2017},
        {"title": "Inductive Representation Learning", "authors": ["Hamilton"], "year": 2017},
    ]
