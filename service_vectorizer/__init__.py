"""Review vectorizer service."""
