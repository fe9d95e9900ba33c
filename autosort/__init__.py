"""
AutoSort - sorts course files into course/session folders.

Infers a course code and a session number from each filename and moves the
file into ``<base>/<course folder>/<session folder>/``.
"""

__version__ = "1.0.0"
