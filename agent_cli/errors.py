"""Custom exception hierarchy for agent-cli."""


class AgentCliError(Exception):
    """Base exception for agent-cli."""


class FeatureValidationError(AgentCliError):
    """Malformed feature input (missing field, bad enum value, self-dependency)."""


class ProgressValidationError(AgentCliError):
    """Malformed progress entry input."""


class FeatureNotFoundError(AgentCliError):
    """A mutation referenced a feature id that is not in the store."""

    def __init__(self, feature_id: str):
        self.feature_id = feature_id
        super().__init__(f"Feature not found: {feature_id}")


class DependencyCycleError(FeatureValidationError):
    """Feature dependencies would form a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("Dependency cycle: " + " -> ".join(cycle))


class InvalidTransitionError(AgentCliError):
    """Status change not allowed by the feature state machine."""

    def __init__(self, feature_id: str, current: str, target: str):
        self.feature_id = feature_id
        self.current = current
        self.target = target
        super().__init__(f"Feature {feature_id}: cannot move from {current} to {target}")


class VerificationError(AgentCliError):
    """Error from an external collaborator (test command, git)."""

    def __init__(self, message: str, retriable: bool = True):
        self.retriable = retriable
        super().__init__(message)


class StateCorruptionError(AgentCliError):
    """feature-list.json or progress.jsonl is corrupted."""


class MessageValidationError(AgentCliError):
    """Malformed conversation messages input (not a list of role/content objects)."""


class ProjectInitError(AgentCliError):
    """Project scaffolding refused or failed (e.g. already initialized)."""
