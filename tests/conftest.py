import pytest

from fakes import FakeBackend, running


@pytest.fixture
def records():
    """A small workspace: two folders, a nested one, and root notebooks"""
    return [
        running("analysis/load.jl", "nb-load"),
        running("analysis/plots/scatter.jl", "nb-scatter"),
        running("analysis/plots/hist.jl", "nb-hist"),
        running("Readme.jl", "nb-readme"),
        {"path": "scratch.jl", "notebook_id": "nb-scratch", "process_status": "no_process"},
        {"path": "archive", "type": "directory"},
    ]


@pytest.fixture
def backend(records):
    return FakeBackend(records)
