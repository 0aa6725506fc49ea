"""
Appointments Domain

Payment holds and the appointment state machine.

- lifecycle.py: statuses and allowed transitions
- repository.py: conflict-safe reservation and compare-and-set status updates
- service.py: holds, confirmation, cancellation, rescheduling, hold expiry
- router.py: user and admin endpoints
"""
