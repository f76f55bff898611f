# Importing the package registers every registry table on Base.metadata
from .canonical_vehicle import CanonicalVehicle
from .user_vehicle import UserVehicle
from .ownership_history import OwnershipHistoryEntry
from .shared_access import SharedAccessGrant
