"""Text-generation client, prompts and model JSON repair."""
