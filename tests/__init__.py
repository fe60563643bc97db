"""
Test Suite for Volition

Engine unit tests, store and generator tests, service integration tests
and HTTP tests (marked `api`).
"""
