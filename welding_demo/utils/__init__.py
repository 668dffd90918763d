"""Shared helpers: error codes, SE3 utilities, IK and JIT warmup."""
