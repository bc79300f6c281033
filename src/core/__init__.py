"""Core domain package for wareact.

Core contains filtering, deduplication, pacing and roster logic without any
websocket or HTTP code, keeping the admission pipeline portable.
"""
