"""Configuration constants.

Centralizes limits and user-facing strings shared by the controller,
the session store and the generation service.
"""

# Session history
MAX_HISTORY_ITEMS = 10  # Sessions kept per subject
STORAGE_KEY_PREFIX = "chat_history_"
NEW_SESSION_PREFIX = "new-"  # Active pointer for a session not yet sent

# Generation
CHAT_TEMPERATURE = 0.5
QUIZ_CONTEXT_MESSAGES = 10  # Recent messages used for quizzes and flashcards
QUIZ_OPTION_COUNT = 4
DEFAULT_QUIZ_LENGTH = 5
DEFAULT_FLASHCARD_COUNT = 10
MAX_STRUCTURED_ITEMS = 50

# Demo mode
DEMO_CHUNK_DELAY = 0.02  # Seconds between streamed demo characters
DEMO_FALLBACK_RESPONSE = "This is a demo response. Everything seems to be working!"

# User-facing messages
GENERATION_ERROR_MESSAGE = (
    "I'm sorry, I encountered an error while processing your request. "
    "Please try again."
)
INTERRUPTED_MESSAGE = "This response was interrupted before it finished. Please try again."
