"""otp/ -- One-time verification codes bound to an identifier (phone number).

Layer rule: otp/ imports from core/ and third-party libraries only.
It does NOT import from sessions/.
"""
