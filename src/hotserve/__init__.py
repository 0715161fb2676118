"""hotserve: a development server for multi-producer builds."""

__version__ = "0.3.0"
