"""
Planning failure types.

Components raise these; only the planner stack catches them and falls back to
the stop command for the current cycle.
"""


class PlanningError(Exception):
    """Base class for recoverable planning-cycle failures."""

    reason = "planning_error"


class InputInvalid(PlanningError, ValueError):
    """Lane waypoints unusable or vehicle position not projectable."""

    reason = "input_invalid"


class NoFeasibleTrajectory(PlanningError):
    """Every sampled candidate violated a constraint."""

    reason = "no_feasible_trajectory"


class StaleInput(PlanningError):
    """Localization missing or older than the configured timeout."""

    reason = "stale_input"


class ControllerTargetUnavailable(PlanningError):
    """Path empty or nearest waypoint out of reach at tracking time."""

    reason = "controller_target_unavailable"
