"""
Forum backend package.

Boards hold threads, threads hold posts, and replies bump threads to the
top of their board. This package provides the FastAPI application, the
storage clients (SQLAlchemy and in-memory) and the ranking rules.
"""
