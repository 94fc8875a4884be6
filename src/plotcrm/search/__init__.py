"""Search index projection and the Vertex AI Search backed customer index."""
