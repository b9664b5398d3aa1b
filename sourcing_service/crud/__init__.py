# Every mapper must be registered before the first query resolves relationships
from sourcing_service import models  # noqa: F401
