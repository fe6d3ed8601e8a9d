"""Exception hierarchy for the authorization controller."""


class AuthzControllerError(Exception):
    """Base exception for controller errors"""


class AuthorityError(AuthzControllerError):
    """Athenz domain could not be fetched or parsed"""


class MalformedRoleNameError(AuthzControllerError):
    """Role name does not follow the <...>.<service-account> convention"""


class InvalidSpecError(AuthzControllerError):
    """Live object carries a spec that cannot be interpreted"""


class StoreError(AuthzControllerError):
    """Policy store operation failed"""


class NotFoundError(StoreError):
    """Object does not exist in the policy store"""


class AlreadyExistsError(StoreError):
    """Object with the same identity already exists"""


class ConflictError(StoreError):
    """Resource version is stale; retry on the next pass"""


class CacheSyncError(AuthzControllerError):
    """Watch caches could not be primed at startup"""
