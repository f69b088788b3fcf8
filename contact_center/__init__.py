"""Contact center back office: case assignment, case management and chatbot."""

__version__ = "0.1.0"
