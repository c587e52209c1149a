"""
Local Message Core Package

Database access, outbox engine, notify strategies and observability.
"""
