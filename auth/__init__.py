"""auth/ -- Authentication and authorization package for the SIGL backend.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
auth/registration.py is the one exception: it also reads and writes
profiles/ through UserStore. auth/ never imports from api/.
api/ imports from auth/, not the other way around.
"""
