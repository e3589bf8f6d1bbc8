"""
TaskTracker - local, file-backed task tracking for development projects.

Tasks, archives, a development journal and the project configuration live
as JSON documents in ``.tasktracker/`` next to the code. The package
provides the engines behind the ``tasktracker``/``tt`` command line and a
builder for size-bounded context documents handed to AI assistants.
"""

__version__ = "1.0.0"
__author__ = "TaskTracker Team"
__license__ = "MIT"

__all__ = ["__version__"]
