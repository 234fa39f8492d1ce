from .place import Place
from .check_in import CheckIn
from .saved_place import SavedPlace

__all__ = ["Place", "CheckIn", "SavedPlace"]
