class CollectionNames:
    """MongoDB collection names used by the repositories."""

    FEED_STATE = "feed_state"
