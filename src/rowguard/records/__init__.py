from .handle import RecordHandle, fetch_row, identity_criteria
from .hooks import MutationHooks

__all__ = ["RecordHandle", "MutationHooks", "fetch_row", "identity_criteria"]
