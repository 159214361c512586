"""
Core business logic: registries, orchestration and startup
"""
