"""
Availability Domain

Weekly rules, date exceptions and slot listing.

- slot_generator.py: pure slot computation
- repository.py: rule and exception storage
- service.py: composes rules, exceptions, bookings and external busy time
- router.py: public slot listing and admin schedule endpoints
"""
