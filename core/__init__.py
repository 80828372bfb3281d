"""core/ -- Kernel of LoginGuard: configuration, clock, hashing, locks, errors, DB engine setup.

Layer rule: core/ imports only stdlib + third-party libraries.
It does NOT import from otp/ or sessions/.
otp/ and sessions/ import from core/, not the other way around.
"""
