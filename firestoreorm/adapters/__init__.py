"""Store adapters for firestoreorm."""
