"""Assistant narration with a language-enforced static fallback."""
