from .tables import Appointments, AvailabilityWindows, Base, metadata

__all__ = [
    "Appointments",
    "AvailabilityWindows",
    "Base",
    "metadata",
]
