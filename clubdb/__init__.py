"""clubdb/ -- Gateway to the managed database platform (auth service + RPC + tables).

Layer rule: clubdb/ imports only core/ and third-party libraries. api/ and
auth/ receive a ClubDatabase instance through app.state; they never build
platform clients themselves.
"""

from clubdb.client import ClubDatabase, ClubDatabaseError, ClubDatabaseUnavailable

__all__ = ["ClubDatabase", "ClubDatabaseError", "ClubDatabaseUnavailable"]
