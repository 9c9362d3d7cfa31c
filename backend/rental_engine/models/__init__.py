from rental_engine.models.booking import Booking, BookingStatusHistory, DriverRequestOffer
from rental_engine.models.driver import Driver
from rental_engine.models.rental_session import RentalSession
from rental_engine.models.user import User
from rental_engine.models.vehicle import Vehicle

__all__ = [
    "Booking", "BookingStatusHistory", "DriverRequestOffer",
    "Driver", "RentalSession", "User", "Vehicle",
]
