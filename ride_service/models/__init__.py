from ride_service.models.location import Location
from ride_service.models.receipt import Receipt, ReceiptUnit
from ride_service.models.ride import Ride
from ride_service.models.payment import Payment
from ride_service.models.monitoring import MonitoringLog

__all__ = ["Location", "Receipt", "ReceiptUnit", "Ride", "Payment", "MonitoringLog"]
