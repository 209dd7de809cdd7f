"""
Firestore collection names. These match the collections the mobile client
reads and writes.
"""

USERS_COLLECTION = "users"
GROUPS_COLLECTION = "groups"
CHATS_COLLECTION = "chats"
MESSAGES_COLLECTION = "messages"
EVENTS_COLLECTION = "events"
SETLISTS_COLLECTION = "setlists"
TASKS_COLLECTION = "tasks"
FINANCES_COLLECTION = "finances"

# Firestore caps "in" filters at 10 values for document-id lookups.
MAX_IN_FILTER_VALUES = 10
