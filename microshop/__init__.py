"""microshop: demo Users and Products services on FastAPI and MongoDB."""

__version__ = "1.0.0"
