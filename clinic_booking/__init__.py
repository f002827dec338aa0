"""
Clinic Booking Service

FastAPI service that turns doctors' weekly availability and schedule
exceptions into bookable slots, and commits appointments without double
booking under concurrent requests.
"""

__version__ = "1.0.0"
