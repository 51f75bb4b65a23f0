class DynoScalerError(Exception):
    """Base exception for dynoscaler errors"""
    pass


class StartupVerificationError(DynoScalerError):
    """Raised when credentials or the target app cannot be verified before monitoring starts"""
    pass


class SnapshotFetchError(DynoScalerError):
    """Raised when queue or formation snapshots cannot be fetched for a tick"""
    pass


class ConfigurationError(DynoScalerError):
    """Raised when a policy references a queue or process type that does not exist"""
    pass


class MutationError(DynoScalerError):
    """Raised when a formation update is rejected"""
    pass
