"""auth/ -- Authentication and authorization package for FitClub.

Layer rule: auth/ imports core/, clubdb/ and third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
