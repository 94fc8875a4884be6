"""Service layer: Firestore persistence, index synchronization and customer search."""
