"""notify/ -- Outbound OTP delivery for SessionAuth.

Layer rule: notify/ imports only stdlib, third-party libraries and core/.
It does NOT import from auth/. auth/ imports from notify/, not the other way around.
"""
