"""
BandSync backend package.

Services for band coordination (accounts, group membership, chat, calendar,
setlists, tasks and finances) on top of a document store abstraction, with a
Firestore implementation for production and an in-memory one for local runs
and tests.
"""
