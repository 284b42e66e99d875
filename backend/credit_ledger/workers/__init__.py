"""Background maintenance tasks run by the ARQ worker."""
