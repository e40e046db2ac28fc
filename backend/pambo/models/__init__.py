from pambo.models.listing import Listing
from pambo.models.user import User

__all__ = ["Listing", "User"]
