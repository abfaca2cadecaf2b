from civicwatch.db.storage.base import (
    ANALYTICS,
    COLLECTIONS,
    COMMENTS,
    REPORTS,
    USERS,
    Eq,
    OneOf,
    Predicate,
    StorageAdapter,
    StorageError,
    StorageSession,
)
