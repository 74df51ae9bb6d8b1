"""
Pytest configuration file

Adds the project root to the Python path so tests can import modules,
and provides small stage flow fixtures shared by the test modules.
"""
import sys
import os

import pytest

# Add the project root to the path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from stageflow import StageDefinition, StageFlowConfig, TransitionDefinition  # noqa: E402


def wizard_config(**overrides) -> StageFlowConfig:
    """Three-step form flow used across tests"""
    stages = [
        StageDefinition(
            name="input",
            data={"value": ""},
            transitions=[TransitionDefinition(target="validation", event="submit")],
            effect="fade",
        ),
        StageDefinition(
            name="validation",
            transitions=[
                TransitionDefinition(target="done", event="approve"),
                TransitionDefinition(target="input", event="reject"),
            ],
        ),
        StageDefinition(
            name="done",
            data={"complete": True},
            transitions=[TransitionDefinition(target="input", event="restart")],
        ),
    ]
    options = {"initial": "input", "stages": stages}
    options.update(overrides)
    return StageFlowConfig(**options)


def splash_config(**overrides) -> StageFlowConfig:
    """Loading screen that advances on its own"""
    stages = [
        StageDefinition(
            name="loading",
            transitions=[TransitionDefinition(target="main", after=3000)],
        ),
        StageDefinition(
            name="main",
            transitions=[
                TransitionDefinition(target="idle", after=2000),
                TransitionDefinition(target="loading", event="reload"),
            ],
        ),
        StageDefinition(
            name="idle",
            transitions=[TransitionDefinition(target="main", event="wake")],
        ),
    ]
    options = {"initial": "loading", "stages": stages}
    options.update(overrides)
    return StageFlowConfig(**options)


@pytest.fixture
def wizard():
    return wizard_config()


@pytest.fixture
def splash():
    return splash_config()
