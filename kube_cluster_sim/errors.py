from enum import Enum


class ErrorKind(str, Enum):
    """
    Closed set of failure reasons reported by the scheduler and fault engine.
    """

    NODE_NOT_FOUND = "NodeNotFound"
    NODE_NOT_READY = "NodeNotReady"
    UNSCHEDULABLE = "Unschedulable"
    POD_NOT_FOUND = "PodNotFound"
    UNKNOWN_FAULT_TYPE = "UnknownFaultType"
    CANNOT_REPAIR = "CannotRepair"
    ETCD_MEMBER_NOT_FOUND = "EtcdMemberNotFound"
    COMPONENT_NOT_FOUND = "ComponentNotFound"


class ManifestError(ValueError):
    """
    Raised when a manifest or snapshot document cannot be converted.
    """


class DuplicateResourceError(ValueError):
    """
    Raised when two objects share the same (kind, namespace, name) key.
    """

    def __init__(self, key: tuple[str, str | None, str]):
        kind, namespace, name = key
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"duplicate {kind} {where!r}")
        self.key = key
