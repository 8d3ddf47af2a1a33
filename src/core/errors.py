class RebalanceConfigurationError(Exception):
    """Raised when a group cannot be rebalanced as configured."""

    code = "REBALANCE_CONFIGURATION_ERROR"


class NoModelAssignedError(RebalanceConfigurationError):
    code = "NO_MODEL_ASSIGNED"


class NoActiveSleevesError(RebalanceConfigurationError):
    code = "NO_ACTIVE_SLEEVES"


class UnknownRebalanceMethodError(RebalanceConfigurationError):
    code = "UNKNOWN_REBALANCE_METHOD"


class GroupMismatchError(RebalanceConfigurationError):
    code = "GROUP_MISMATCH"


class RebalanceGroupNotFoundError(RebalanceConfigurationError):
    code = "REBALANCE_GROUP_NOT_FOUND"
