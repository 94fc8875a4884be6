"""Saved search list models and the condition/expression evaluators."""
