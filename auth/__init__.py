"""auth/ -- Authentication and session-lifecycle package for SessionAuth.

Layer rule: auth/ imports stdlib, third-party libraries, core/ and notify/.
core/ and notify/ never import from auth/.
"""
