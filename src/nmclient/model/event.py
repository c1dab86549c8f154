from dataclasses import dataclass


@dataclass(frozen=True)
class OperationEvent:
    """structured record of one operation, handed to the telemetry collaborator

    destructive is True for edits using replace, delete or remove so that a
    collaborator can log them at a distinguishable severity.
    """
    target: str
    protocol: str
    kind: str
    path: str = None
    merge_policy: str = None
    destructive: bool = False
    duration: float = 0.0
    outcome: str = "ok"
    error_kind: str = None
    error: str = None

    def as_dict(self) -> dict:
        return {
            'target': self.target,
            'protocol': self.protocol,
            'kind': self.kind,
            'path': self.path,
            'merge_policy': self.merge_policy,
            'destructive': self.destructive,
            'duration': self.duration,
            'outcome': self.outcome,
            'error_kind': self.error_kind,
            'error': self.error,
        }
