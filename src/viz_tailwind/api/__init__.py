from .client import BackendError, TailwindClient
from .latest import FetchResult, LatestRequestGate

__all__ = ["BackendError", "TailwindClient", "FetchResult", "LatestRequestGate"]
