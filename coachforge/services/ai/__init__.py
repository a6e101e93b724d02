"""Program generation pipeline, retrieval and chat tooling."""
