"""Core building blocks: errors, resilience, tokens and identity."""
