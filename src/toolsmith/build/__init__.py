"""Tool build cycle and its lifecycle state machine."""

from toolsmith.build.state_machine import BuildState, BuildStateMachine

__all__ = ["BuildState", "BuildStateMachine"]
