"""sessions/ -- Login sessions, refresh secrets, access assertions, and expiry sweeping.

Layer rule: sessions/ imports from core/ and third-party libraries. The
sweeper alone also imports otp.store, because it purges both tables.
"""
