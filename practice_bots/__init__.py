"""Practice onboarding and billing automation bots."""
