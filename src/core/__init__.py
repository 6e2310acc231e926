"""Core domain package for redwatch.

Core contains matching, leasing, fan-out and dispatch logic without any
Reddit, email or storage-specific code, keeping the business logic portable.
"""
