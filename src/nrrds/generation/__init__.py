"""Comic generation pipeline and post-processing."""
