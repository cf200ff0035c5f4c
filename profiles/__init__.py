"""profiles/ -- User profile records (identity, email, role).

Layer rule: profiles/ imports only stdlib, third-party libraries and core/.
auth/ reads profiles through UserStore; profiles/ never imports from auth/.
"""
