"""
Scheduling domain - availability, booking and the appointment status machine.

Structure:
    schemas.py              # request/response models, AppointmentStatus
    state_machine.py        # allowed status transitions
    repository.py           # appointment and working-hours queries
    availability_service.py # free windows from working hours minus bookings
    service.py              # create / reschedule / cancel / complete
    router.py               # /appointments and /availability endpoints
"""
