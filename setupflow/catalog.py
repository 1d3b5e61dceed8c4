"""Default installer steps used when the configuration defines none."""

from __future__ import annotations

from typing import List

from .contracts import Step
from .graph import StepGraph

DEFAULT_STEPS: List[Step] = [
    Step(
        id="welcome",
        name="Welcome",
        description="Introduce the installer",
        order=1,
        has_auto_detection=False,
    ),
    Step(
        id="prerequisites",
        name="Prerequisites",
        description="Check operating system requirements",
        order=2,
        depends_on={"welcome"},
        estimated_duration=30,
    ),
    Step(
        id="network-check",
        name="Network check",
        description="Check connectivity and DNS resolution",
        order=3,
        depends_on={"prerequisites"},
        estimated_duration=60,
    ),
    Step(
        id="nodejs-setup",
        name="Node.js setup",
        description="Detect or install Node.js",
        order=4,
        depends_on={"network-check"},
        estimated_duration=300,
    ),
    Step(
        id="google-setup",
        name="Google setup",
        description="Guide through Google account configuration",
        order=5,
        optional=True,
        skippable=True,
        depends_on={"network-check"},
        has_auto_detection=False,
        estimated_duration=120,
    ),
    Step(
        id="claude-install",
        name="Claude CLI install",
        description="Detect or install the Claude CLI",
        order=6,
        depends_on={"nodejs-setup"},
        estimated_duration=180,
    ),
    Step(
        id="api-config",
        name="API configuration",
        description="Configure the Anthropic API key",
        order=7,
        optional=True,
        skippable=True,
        depends_on={"nodejs-setup"},
        has_auto_detection=False,
        estimated_duration=60,
    ),
    Step(
        id="completion",
        name="Done",
        description="Finish the installation",
        order=8,
        depends_on={"claude-install"},
        has_auto_detection=False,
    ),
]


def default_steps() -> List[Step]:
    return list(DEFAULT_STEPS)


def default_graph() -> StepGraph:
    return StepGraph.load(DEFAULT_STEPS)
