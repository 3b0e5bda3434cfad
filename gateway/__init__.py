"""
Creative Gateway: tracked, asynchronous jobs over generative AI providers.
"""

__version__ = "0.1.0"
