"""Deterministic per-request decision stages: rank, filter, group, classify, chip."""
