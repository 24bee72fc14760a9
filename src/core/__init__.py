"""Core domain package for civictriage.

Core contains duplicate detection, complaint lifecycle, and reputation logic
without any storage, model-provider, or geocoding specific code, keeping the
business logic portable.
"""
